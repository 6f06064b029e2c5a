"""HTTP routers of the KORE ERP API."""
