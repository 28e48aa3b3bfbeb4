"""
boto3 RemoteAPI Adapter Module.

Wraps a boto3 service client so that every call raises classified RemoteErrors
instead of raw botocore ClientErrors. This is the only place where provider
error codes and messages are inspected; everything downstream reads ``kind``.
"""

from typing import Any, Callable, Dict, Optional

import boto3

from ..utils import remote_call, setup_logging
from .classifier import DEFAULT_CLASSIFIER, ErrorClassifier
from .context import Context
from .types import AWSClient, Response
from .waiter import Status, StatusFetcher

logger = setup_logging()

StatusExtractor = Callable[[Response], Any]


class BotoRemoteAPI:
    """
    Service-neutral RemoteAPI over a boto3 client.

    Args:
        client: boto3 client for any service
        classifier: Classifier used to tag failures
    """

    def __init__(self, client: AWSClient, classifier: Optional[ErrorClassifier] = None) -> None:
        self.client = client
        self.classifier = classifier or DEFAULT_CLASSIFIER

    @classmethod
    def for_service(
        cls, service_name: str, context: Optional[Context] = None, classifier: Optional[ErrorClassifier] = None
    ) -> "BotoRemoteAPI":
        """Create a boto3 client for ``service_name`` in the context's region."""
        region_name = context.region if context is not None else None
        return cls(boto3.client(service_name, region_name=region_name), classifier)

    def call(self, operation: str, **params: Any) -> Response:
        """
        Invoke a client method by name, e.g. ``call("describe_cache_clusters", CacheClusterId="x")``.

        Raises:
            RemoteError: If the call failed; ``kind`` holds the classification
        """
        method = getattr(self.client, operation)

        @remote_call(classifier=self.classifier, operation=operation)
        def invoke() -> Response:
            return method(**params)

        logger.debug(f"Calling {operation}")
        return invoke()

    def status_fetcher(
        self, operation: str, params: Dict[str, Any], extract: StatusExtractor
    ) -> StatusFetcher:
        """
        Build a Waiter status function from a describe call.

        Args:
            operation: Describe method name
            params: Keyword arguments for the describe call
            extract: Maps the response to a state string, a Status, or None when
                the response shows the object is gone

        Returns:
            Zero-argument callable suitable for Waiter.wait_for
        """

        def fetch_status() -> Any:
            response = self.call(operation, **params)
            status = extract(response)
            if status is None or isinstance(status, (Status, str)):
                return status
            raise TypeError(f"status extractor for {operation} returned {type(status).__name__}, expected str or Status")

        return fetch_status
