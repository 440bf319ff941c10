"""MSP Reporting: multi-tenant reporting backend for managed service providers.

Syncs HaloPSA tickets into a local store, reads NinjaOne devices and 20i
domains live, and filters everything by the caller's company.
"""

__version__ = "1.0.0"
