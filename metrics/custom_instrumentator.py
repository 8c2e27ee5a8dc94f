from prometheus_fastapi_instrumentator import Instrumentator

from singlepiece.api import version_prefix

instrumentator = Instrumentator(
    should_ignore_untemplated=True,      # /payments/GZ123 -> /payments/{order_ref}
    excluded_handlers=["/metrics", f"{version_prefix}/health"],
    should_instrument_requests_inprogress=True,
    should_group_status_codes=False,
)
