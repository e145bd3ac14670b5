"""RabbitMQ, HTTP relay, retry and validation helpers."""
