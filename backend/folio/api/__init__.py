"""HTTP surface: dependencies, error mapping and routers."""
