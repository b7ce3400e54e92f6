"""Monitoring and observability setup.

Tracing and metrics are exported over OTLP when TELEMETRY_ENABLED is set.
Otherwise the OpenTelemetry API falls back to its no-op providers, so every
counter and span below is still safe to use (this is how the test suite runs).

Histograms recorded inside an active trace carry exemplars automatically,
which links slow order placements and upstream calls to the traces behind
them.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from config import OTEL_EXPORTER_OTLP_ENDPOINT, PYROSCOPE_SERVER, SERVICE_NAME, TELEMETRY_ENABLED

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    tracer_provider = TracerProvider(resource=resource)
    otlp_span_exporter = OTLPSpanExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    otlp_metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True),
        export_interval_millis=5000
    )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[otlp_metric_reader]
    )
    metrics.set_meter_provider(meter_provider)

    logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    if not TELEMETRY_ENABLED:
        return
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": "production"}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


if TELEMETRY_ENABLED:
    tracer = init_tracing()
    meter = init_metrics()
else:
    tracer = trace.get_tracer(__name__)
    meter = metrics.get_meter(__name__)

# Catalog
product_views_counter = meter.create_counter(
    "shop.products.views",
    description="Product catalog list views",
    unit="1"
)

product_detail_views_counter = meter.create_counter(
    "shop.products.detail_views",
    description="Product detail views by category",
    unit="1"
)

# Carts
cart_additions_counter = meter.create_counter(
    "shop.cart.additions",
    description="Items added to server or device carts",
    unit="1"
)

cart_switches_counter = meter.create_counter(
    "shop.cart.switches",
    description="Device cart identity switches (guest <-> user)",
    unit="1"
)

# Orders
orders_created_counter = meter.create_counter(
    "shop.orders.created",
    description="Orders placed",
    unit="1"
)

order_amount_histogram = meter.create_histogram(
    "shop.orders.amount",
    description="Order total amount in VND",
    unit="VND"
)

orders_cancelled_counter = meter.create_counter(
    "shop.orders.cancelled",
    description="Orders cancelled with stock restored",
    unit="1"
)

stock_shortfall_counter = meter.create_counter(
    "shop.orders.stock_shortfall",
    description="Order attempts rejected for insufficient stock",
    unit="1"
)

order_emails_failed_counter = meter.create_counter(
    "shop.orders.confirmation_email_failures",
    description="Order confirmation emails that could not be sent",
    unit="1"
)

# Payments
payment_webhooks_counter = meter.create_counter(
    "shop.payment.webhooks",
    description="Payment webhook deliveries by outcome",
    unit="1"
)

external_payment_duration_histogram = meter.create_histogram(
    "shop.external.payment.duration",
    description="Duration of payment gateway calls",
    unit="s"
)

# Chat assistant
external_ai_duration_histogram = meter.create_histogram(
    "shop.external.ai.duration",
    description="Duration of AI completion calls",
    unit="s"
)

chat_failures_counter = meter.create_counter(
    "shop.chat.failures",
    description="Chat messages whose completion call failed",
    unit="1"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "shop.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "shop.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "shop.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)

suspicious_activity_counter = meter.create_counter(
    "shop.security.suspicious_activity",
    description="Total number of suspicious activity detections",
    unit="1"
)
