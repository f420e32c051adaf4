# kafka_to_opensearch/errors.py


class BridgeError(Exception):
    pass


class ConfigError(BridgeError):
    pass


class RegistrationError(BridgeError):
    """Setting up a consumer for one topic failed.

    `retryable` tells the caller whether registering the same topic again
    later may succeed (network trouble) or not (bad configuration).
    """

    def __init__(self, topic: str, message: str, retryable: bool = False):
        super().__init__(f"{topic}: {message}")
        self.topic = topic
        self.retryable = retryable


class PublisherSetupError(RegistrationError):
    def __init__(self, topic: str, message: str):
        super().__init__(topic, message, retryable=True)


class ConsumerConnectError(RegistrationError):
    def __init__(self, topic: str, message: str):
        super().__init__(topic, message, retryable=True)


class TopicAlreadyRegistered(RegistrationError):
    def __init__(self, topic: str):
        super().__init__(topic, "already registered", retryable=False)


class RegistryClosedError(RegistrationError):
    def __init__(self, topic: str):
        super().__init__(topic, "registry is shutting down", retryable=False)


class IndexingError(BridgeError):
    def __init__(self, index: str, cause: Exception):
        super().__init__(f"index {index}: {cause}")
        self.index = index
        self.cause = cause
