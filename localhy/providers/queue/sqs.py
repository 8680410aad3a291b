import json
from typing import Optional

import boto3

from localhy.config import Settings, settings as default_settings


class SQSClient:
    def __init__(self, settings: Optional[Settings] = None, client=None):
        config = settings or default_settings
        self.sqs = client or boto3.client(
            "sqs",
            region_name=config.AWS_REGION,
            aws_access_key_id=config.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
            endpoint_url=config.SQS_ENDPOINT_URL,
        )
        self._queue_urls: dict = {}

    def _queue_url(self, queue_name: str) -> str:
        if queue_name not in self._queue_urls:
            self._queue_urls[queue_name] = self.sqs.get_queue_url(QueueName=queue_name)["QueueUrl"]
        return self._queue_urls[queue_name]

    def send_message(self, queue_name: str, message_body: dict, group_id: Optional[str] = None):
        kwargs = {
            "QueueUrl": self._queue_url(queue_name),
            "MessageBody": json.dumps(message_body, default=str),
        }
        if queue_name.endswith(".fifo"):
            # per-user ordering on FIFO queues
            kwargs["MessageGroupId"] = group_id or "default"
        return self.sqs.send_message(**kwargs)
