from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    broker_host: str = Field("localhost", validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, validation_alias="BROKER_PORT")
    broker_user: str = Field("guest", validation_alias="BROKER_USER")
    broker_password: str = Field("guest", validation_alias="BROKER_PASSWORD")

    queue_name: str = Field("batch_queue", validation_alias="QUEUE_NAME")
    queue_max_length: int = Field(10_000, validation_alias="QUEUE_MAX_LENGTH")
    # Quorum queues count deliveries (x-delivery-count); classic queues only flag redelivery.
    queue_type: str = Field("quorum", validation_alias="QUEUE_TYPE")
    # Empty disables dead-lettering; rejected messages are then dropped by the broker.
    dead_letter_exchange: str = Field("", validation_alias="DEAD_LETTER_EXCHANGE")
    dead_letter_routing_key: str = Field("", validation_alias="DEAD_LETTER_ROUTING_KEY")

    consumer_backend: str = Field("rabbitmq", validation_alias="CONSUMER_BACKEND")
    repository_backend: str = Field("none", validation_alias="REPOSITORY_BACKEND")
    handler_backend: str = Field("logging", validation_alias="HANDLER_BACKEND")

    batch_size: int = Field(10, ge=1, validation_alias="BATCH_SIZE")
    batch_wait_seconds: float = Field(1.0, ge=0, validation_alias="BATCH_WAIT_SECONDS")
    batch_deadline_seconds: float = Field(30.0, gt=0, validation_alias="BATCH_DEADLINE_SECONDS")
    max_concurrency: int = Field(1, ge=1, validation_alias="MAX_CONCURRENCY")
    # Deliveries allowed before a failed message is dead-lettered instead of requeued.
    max_receive_count: int = Field(3, ge=1, validation_alias="MAX_RECEIVE_COUNT")
    idle_sleep_seconds: float = Field(0.5, ge=0, validation_alias="IDLE_SLEEP_SECONDS")

    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    max_connection_attempts: int = Field(10, validation_alias="MAX_CONNECTION_ATTEMPTS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")

    database_host: str = Field("localhost", validation_alias="DATABASE_HOST")
    database_port: int = Field(27017, validation_alias="DATABASE_PORT")
    database_user: str = Field("", validation_alias="DATABASE_USER")
    database_password: str = Field("", validation_alias="DATABASE_PASSWORD")
    database_name: str = Field("batch_worker", validation_alias="DATABASE_NAME")
    database_collection: str = Field("batch_outcomes", validation_alias="DATABASE_COLLECTION")
    database_connection_timeout_ms: int = Field(5000, validation_alias="DATABASE_CONNECTION_TIMEOUT_MS")

    forward_url: str = Field("", validation_alias="FORWARD_URL")
    forward_connect_timeout_seconds: float = Field(5.0, validation_alias="FORWARD_CONNECT_TIMEOUT_SECONDS")
    forward_read_timeout_seconds: float = Field(15.0, validation_alias="FORWARD_READ_TIMEOUT_SECONDS")

    send_greeting_on_startup: bool = Field(False, validation_alias="SEND_GREETING_ON_STARTUP")
    lambda_deadline_margin_ms: int = Field(1000, ge=0, validation_alias="LAMBDA_DEADLINE_MARGIN_MS")
