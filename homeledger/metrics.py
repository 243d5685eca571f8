# homeledger/metrics.py
from prometheus_client import Counter

uploads_total = Counter("homeledger_uploads_total", "Total document uploads")
uploads_rejected = Counter("homeledger_uploads_rejected_total", "Uploads rejected before storage", ["reason"])
extractions_total = Counter("homeledger_extractions_total", "Extractions completed")
extractions_failed = Counter("homeledger_extractions_failed_total", "Extraction failures")
resolutions_failed = Counter("homeledger_resolutions_failed_total", "Resolution failures")
confirmations_total = Counter("homeledger_confirmations_total", "Documents confirmed", ["action"])
trigger_failures = Counter("homeledger_trigger_failures_total", "Background processing triggers that failed")
