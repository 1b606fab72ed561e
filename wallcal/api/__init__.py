"""HTTP layer for wallcal: middleware, routes and the aiohttp server."""
