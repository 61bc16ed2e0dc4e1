"""LEX -> Zoho shipment sync service.

Package layout:
  integrations/  upstream HTTP clients (LEX, Zoho, Zoho OAuth)
  services/      mapping, enrichment and the batch processor
  jobs/          failed-operation queue and the daily reconciliation job
  api/           FastAPI routers and dependencies
"""

__version__ = "1.0.0"

__all__: list[str] = ["__version__"]
