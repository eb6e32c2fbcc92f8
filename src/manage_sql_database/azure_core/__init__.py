"""
A small management-plane client for Azure Resource Manager built directly on aiohttp
(https://docs.microsoft.com/en-us/rest/api/azure/). This should contain no
SQL-specific code.

Only credential handling is delegated to azure-identity. Everything else (requests,
paging, long-running operation polling, error mapping) is done here, which keeps the
call sequence of the sample explicit.
"""
