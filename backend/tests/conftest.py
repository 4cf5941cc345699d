"""
Shared fixtures: moto-backed DynamoDB tables and seeded organizations/creators.
"""
import os
import sys
from decimal import Decimal
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# Add src to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

os.environ.setdefault('AWS_ACCESS_KEY_ID', 'testing')
os.environ.setdefault('AWS_SECRET_ACCESS_KEY', 'testing')
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')

from shared.config import config  # noqa: E402
from shared.services import Services  # noqa: E402

ORG_ID = 'org-acme'
ORG_KEY = 'key-acme'
QUIET_ORG_ID = 'org-quiet'
QUIET_ORG_KEY = 'key-quiet'
WEBHOOK_URL = 'https://hooks.example.com/pinksync'


def _string_attrs(*names):
    return [{'AttributeName': n, 'AttributeType': 'S'} for n in names]


def _index(name, hash_key, range_key=None):
    schema = [{'AttributeName': hash_key, 'KeyType': 'HASH'}]
    if range_key:
        schema.append({'AttributeName': range_key, 'KeyType': 'RANGE'})
    return {'IndexName': name, 'KeySchema': schema, 'Projection': {'ProjectionType': 'ALL'}}


def create_tables(dynamodb):
    tables = [
        (config.ORGANIZATIONS_TABLE, ('orgId', None), ['orgId', 'apiKey'], [_index('ApiKeyIndex', 'apiKey')]),
        (config.CREATORS_TABLE, ('creatorId', None), ['creatorId'], []),
        (config.REQUESTS_TABLE, ('requestId', None), ['requestId', 'orgId', 'status', 'createdAt'], [
            _index('OrgIndex', 'orgId', 'createdAt'),
            _index('StatusIndex', 'status', 'createdAt'),
        ]),
        (config.BIDS_TABLE, ('requestId', 'bidId'), ['requestId', 'bidId'], []),
        (config.PROJECTS_TABLE, ('projectId', None), ['projectId'], []),
        (config.STATUS_LOGS_TABLE, ('requestId', 'logId'), ['requestId', 'logId'], []),
        (config.WEBHOOK_EVENTS_TABLE, ('eventId', None), ['eventId', 'orgId', 'status', 'createdAt'], [
            _index('OrgIndex', 'orgId', 'createdAt'),
            _index('StatusIndex', 'status', 'createdAt'),
        ]),
    ]
    for name, (hash_key, range_key), attrs, indexes in tables:
        key_schema = [{'AttributeName': hash_key, 'KeyType': 'HASH'}]
        if range_key:
            key_schema.append({'AttributeName': range_key, 'KeyType': 'RANGE'})
        params = {
            'TableName': name,
            'KeySchema': key_schema,
            'AttributeDefinitions': _string_attrs(*attrs),
            'BillingMode': 'PAY_PER_REQUEST',
        }
        if indexes:
            params['GlobalSecondaryIndexes'] = indexes
        dynamodb.create_table(**params)


@pytest.fixture
def dynamodb():
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        create_tables(resource)
        yield resource


@pytest.fixture
def services(dynamodb):
    services = Services(dynamodb, queue_url='')
    # Deliveries are exercised explicitly in the webhook tests
    services.dispatcher.schedule = MagicMock()
    yield services
    services.dispatcher.shutdown()


@pytest.fixture
def org(dynamodb):
    item = {
        'orgId': ORG_ID,
        'apiKey': ORG_KEY,
        'name': 'Acme Media',
        'email': 'ops@acme.example',
        'webhookUrl': WEBHOOK_URL,
        'isActive': True,
    }
    dynamodb.Table(config.ORGANIZATIONS_TABLE).put_item(Item=item)
    return item


@pytest.fixture
def quiet_org(dynamodb):
    """Organization without a registered webhook endpoint."""
    item = {
        'orgId': QUIET_ORG_ID,
        'apiKey': QUIET_ORG_KEY,
        'name': 'Quiet Studio',
        'email': 'hello@quiet.example',
        'isActive': True,
    }
    dynamodb.Table(config.ORGANIZATIONS_TABLE).put_item(Item=item)
    return item


@pytest.fixture
def creators(dynamodb):
    table = dynamodb.Table(config.CREATORS_TABLE)
    items = [
        {
            'creatorId': 'creator-1', 'name': 'Jordan Lee', 'email': 'jordan@example.com',
            'skills': {'captioning'}, 'isVerified': True, 'isAvailable': True,
            'rating': Decimal('4.8'), 'completedProjects': 12,
        },
        {
            'creatorId': 'creator-2', 'name': 'Sam Rivera', 'email': 'sam@example.com',
            'skills': {'captioning', 'translation'}, 'isVerified': True, 'isAvailable': True,
            'rating': Decimal('4.9'), 'completedProjects': 30,
        },
        {
            'creatorId': 'creator-3', 'name': 'Alex Kim', 'email': 'alex@example.com',
            'skills': {'captioning', 'translation', 'asl-interpretation'}, 'isVerified': False, 'isAvailable': True,
            'rating': Decimal('5.0'), 'completedProjects': 45,
        },
        {
            'creatorId': 'creator-4', 'name': 'Riley Chen', 'email': 'riley@example.com',
            'skills': {'captioning', 'translation'}, 'isVerified': True, 'isAvailable': False,
            'rating': Decimal('4.5'), 'completedProjects': 8,
        },
    ]
    for item in items:
        table.put_item(Item=item)
    return {item['creatorId']: item for item in items}


@pytest.fixture
def request_fields():
    return {
        'title': 'Caption product launch video',
        'description': 'Closed captions for a 12 minute launch video',
        'requirements': {'skills': ['captioning'], 'format': 'srt'},
        'serviceType': 'captioning',
        'budget': 800,
    }


def count_items(dynamodb, table_name):
    return len(dynamodb.Table(table_name).scan()['Items'])
