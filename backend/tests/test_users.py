import pytest

from folio.core.errors import Conflict, Unauthorized, ValidationFailed
from folio.services import users


async def test_users_are_created_with_hashed_passwords_and_can_sign_in(database):
    await database.create_all()
    try:
        async with database.session() as session:
            user = await users.create_user(session, email=" Ada@Example.com ", name="Ada", password="correct horse")
            assert user.email == "ada@example.com"
            assert user.password_hash != "correct horse"
            assert user.last_login_at is None

            with pytest.raises(Conflict) as duplicate:
                await users.create_user(session, email="ada@example.com", name="Other", password="whatever1")
            assert duplicate.value.code == "DUPLICATE_EMAIL"

            signed_in = await users.authenticate(session, email="ADA@example.com", password="correct horse")
            assert signed_in.id == user.id
            assert signed_in.last_login_at is not None

            with pytest.raises(Unauthorized) as wrong:
                await users.authenticate(session, email="ada@example.com", password="wrong password")
            assert wrong.value.code == "INVALID_CREDENTIALS"
    finally:
        await database.dispose()


@pytest.mark.parametrize(
    ("email", "name", "password", "code"),
    [
        ("not-an-email", "Ada", "longenough", "INVALID_EMAIL"),
        ("ada@example.com", "  ", "longenough", "INVALID_NAME"),
        ("ada@example.com", "Ada", "short", "WEAK_PASSWORD"),
    ],
)
async def test_invalid_signups_are_rejected(database, email, name, password, code):
    await database.create_all()
    try:
        async with database.session() as session:
            with pytest.raises(ValidationFailed) as excinfo:
                await users.create_user(session, email=email, name=name, password=password)
        assert excinfo.value.code == code
    finally:
        await database.dispose()
