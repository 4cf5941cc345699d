"""
Explicit wiring of the core components around one DynamoDB resource.
Handlers obtain a cached instance through get_services().
"""
from functools import lru_cache

import boto3

from .audit_log import AuditLog
from .auth import IdentityGate
from .config import config
from .delivery_store import DeliveryRecordStore
from .matching import CreatorDirectory
from .organizations import OrganizationStore
from .webhooks import WebhookDispatcher
from .workflow import WorkflowEngine


class Services:

    def __init__(self, dynamodb=None, settings=config, queue_url: str = None):
        dynamodb = dynamodb or boto3.resource('dynamodb', region_name=settings.AWS_REGION)

        self.organizations = OrganizationStore(dynamodb.Table(settings.ORGANIZATIONS_TABLE))
        self.creators = CreatorDirectory(dynamodb.Table(settings.CREATORS_TABLE))
        self.audit_log = AuditLog(dynamodb.Table(settings.STATUS_LOGS_TABLE))
        self.deliveries = DeliveryRecordStore(dynamodb.Table(settings.WEBHOOK_EVENTS_TABLE))
        self.identity = IdentityGate(self.organizations)
        self.dispatcher = WebhookDispatcher(
            self.deliveries,
            self.organizations,
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            max_workers=settings.WEBHOOK_MAX_WORKERS,
            queue_url=queue_url if queue_url is not None else settings.WEBHOOK_QUEUE_URL,
        )
        self.workflow = WorkflowEngine(
            dynamodb,
            dynamodb.Table(settings.REQUESTS_TABLE),
            dynamodb.Table(settings.BIDS_TABLE),
            dynamodb.Table(settings.PROJECTS_TABLE),
            self.audit_log,
            self.organizations,
            self.creators,
            self.dispatcher,
        )


@lru_cache(maxsize=None)
def get_services() -> Services:
    return Services()
