"""Structured logging configuration."""
import logging
import sys
from pythonjsonlogger.json import JsonFormatter
from opentelemetry import trace

from config import API_VERSION, LOG_LEVEL, OTEL_EXPORTER_OTLP_ENDPOINT, SERVICE_NAME, TELEMETRY_ENABLED

# Note: OpenTelemetry logging SDK is experimental
try:
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.sdk.resources import Resource
    OTLP_LOGGING_AVAILABLE = True
except ImportError:
    OTLP_LOGGING_AVAILABLE = False


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter that includes trace context."""

    def add_fields(self, log_record, record, message_dict):
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        span = trace.get_current_span()
        if span and span.get_span_context().is_valid:
            ctx = span.get_span_context()
            log_record['trace_id'] = format(ctx.trace_id, '032x')
            log_record['span_id'] = format(ctx.span_id, '016x')
            log_record['trace_flags'] = ctx.trace_flags

        log_record['service'] = SERVICE_NAME
        log_record['version'] = API_VERSION

        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def _add_otlp_handler(root_logger: logging.Logger) -> None:
    try:
        resource = Resource.create({
            "service.name": SERVICE_NAME,
            "service.version": API_VERSION,
        })
        logger_provider = LoggerProvider(resource=resource)
        logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
        )

        from opentelemetry._logs import set_logger_provider
        set_logger_provider(logger_provider)

        root_logger.addHandler(LoggingHandler(level=logging.INFO, logger_provider=logger_provider))
        logging.info("OTLP logging handler configured")
    except Exception as e:
        logging.warning(f"Failed to configure OTLP logging handler: {e}")


def setup_logging(level: str = LOG_LEVEL):
    """Configure structured logging for the application.

    Args:
        level: Root log level name (LOG_LEVEL, INFO by default)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = CustomJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={
            'levelname': 'level'
        }
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if TELEMETRY_ENABLED:
        if OTLP_LOGGING_AVAILABLE:
            _add_otlp_handler(root_logger)
        else:
            logging.warning("OTLP logging SDK not available - logs will only go to stdout")

    # Reduce noise from libraries
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
