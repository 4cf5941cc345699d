"""
DynamoDB utility functions for transactional and paginated operations.
"""
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from .logging import logger

# DynamoDB caps a single transaction at 100 items
MAX_TRANSACTION_ITEMS = 100

_serializer = TypeSerializer()

_RETRYABLE_CODES = ('TransactionConflict', 'TransactionConflictException', 'TransactionInProgressException')


def to_dynamo(value: Any) -> Any:
    """Recursively convert floats to Decimal and drop None map values."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a native item into the low-level attribute-value format."""
    return {k: _serializer.serialize(v) for k, v in to_dynamo(item).items()}


def build_update(
    set_fields: Optional[Dict[str, Any]] = None,
    add_fields: Optional[Dict[str, Any]] = None
) -> tuple:
    """
    Build an UpdateExpression using placeholders for every attribute,
    so reserved words (status, name, data...) never need special casing.

    Returns:
        (expression, names, values)
    """
    names, values = {}, {}
    set_parts, add_parts = [], []

    set_fields = {k: v for k, v in (set_fields or {}).items() if v is not None}
    for idx, (field, value) in enumerate(set_fields.items()):
        names[f'#s{idx}'] = field
        values[f':s{idx}'] = value
        set_parts.append(f'#s{idx} = :s{idx}')

    for idx, (field, value) in enumerate((add_fields or {}).items()):
        names[f'#a{idx}'] = field
        values[f':a{idx}'] = value
        add_parts.append(f'#a{idx} :a{idx}')

    expression = []
    if set_parts:
        expression.append('SET ' + ', '.join(set_parts))
    if add_parts:
        expression.append('ADD ' + ', '.join(add_parts))
    return ' '.join(expression), names, values


def transact_put(
    table_name: str,
    item: Dict[str, Any],
    condition: Optional[str] = None,
    names: Optional[Dict[str, str]] = None,
    values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build a Put entry for transact_write_items."""
    put = {'TableName': table_name, 'Item': serialize_item(item)}
    if condition:
        put['ConditionExpression'] = condition
    if names:
        put['ExpressionAttributeNames'] = names
    if values:
        put['ExpressionAttributeValues'] = serialize_item(values)
    return {'Put': put}


def transact_update(
    table_name: str,
    key: Dict[str, Any],
    set_fields: Optional[Dict[str, Any]] = None,
    add_fields: Optional[Dict[str, Any]] = None,
    condition: Optional[str] = None,
    names: Optional[Dict[str, str]] = None,
    values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build an Update entry for transact_write_items."""
    expression, expr_names, expr_values = build_update(set_fields, add_fields)
    expr_names.update(names or {})
    expr_values.update(values or {})

    update = {
        'TableName': table_name,
        'Key': serialize_item(key),
        'UpdateExpression': expression,
        'ExpressionAttributeNames': expr_names,
        'ExpressionAttributeValues': serialize_item(expr_values),
    }
    if condition:
        update['ConditionExpression'] = condition
    return {'Update': update}


def cancellation_codes(error: ClientError) -> List[str]:
    """Per-item cancellation codes of a TransactionCanceledException, in TransactItems order."""
    reasons = error.response.get('CancellationReasons') or []
    return [reason.get('Code', 'None') for reason in reasons]


def is_transaction_cancelled(error: ClientError) -> bool:
    return error.response['Error']['Code'] == 'TransactionCanceledException'


def transact_write(client, items: List[Dict[str, Any]], retries: int = 3) -> None:
    """
    Run transact_write_items, retrying when DynamoDB reports a conflicting
    concurrent transaction. Condition failures are raised to the caller.
    """
    if len(items) > MAX_TRANSACTION_ITEMS:
        raise ValueError(f"Transaction has {len(items)} items, limit is {MAX_TRANSACTION_ITEMS}")

    for attempt in range(retries + 1):
        try:
            client.transact_write_items(TransactItems=items)
            return
        except ClientError as e:
            code = e.response['Error']['Code']
            conflicted = code in _RETRYABLE_CODES or (
                is_transaction_cancelled(e)
                and any(c in _RETRYABLE_CODES for c in cancellation_codes(e))
                and 'ConditionalCheckFailed' not in cancellation_codes(e)
            )
            if not conflicted or attempt == retries:
                raise
            logger.warning(f"Transaction conflict, retrying ({attempt + 1}/{retries})")
            time.sleep(0.05 * (attempt + 1))


def update_item(
    table,
    key: Dict[str, Any],
    set_fields: Optional[Dict[str, Any]] = None,
    add_fields: Optional[Dict[str, Any]] = None,
    condition: Optional[str] = None,
    names: Optional[Dict[str, str]] = None,
    values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Update a single item and return its new image.
    ClientError propagates, including ConditionalCheckFailedException.
    """
    expression, expr_names, expr_values = build_update(set_fields, add_fields)
    expr_names.update(names or {})
    expr_values.update(values or {})

    params = {
        'Key': key,
        'UpdateExpression': expression,
        'ExpressionAttributeNames': expr_names,
        'ExpressionAttributeValues': to_dynamo(expr_values),
        'ReturnValues': 'ALL_NEW',
    }
    if condition:
        params['ConditionExpression'] = condition

    response = table.update_item(**params)
    return response.get('Attributes', {})


def is_condition_failure(error: ClientError) -> bool:
    return error.response['Error']['Code'] == 'ConditionalCheckFailedException'


def query_all(table, max_items: Optional[int] = None, **query_params) -> List[Dict[str, Any]]:
    """
    Query a table or index, following LastEvaluatedKey until exhausted
    or until max_items have been collected.
    """
    items: List[Dict[str, Any]] = []
    while True:
        response = table.query(**query_params)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key or (max_items and len(items) >= max_items):
            break
        query_params['ExclusiveStartKey'] = last_key
    return items[:max_items] if max_items else items


def scan_all(table, **scan_params) -> List[Dict[str, Any]]:
    """Scan a table, following LastEvaluatedKey until exhausted."""
    items: List[Dict[str, Any]] = []
    while True:
        response = table.scan(**scan_params)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            break
        scan_params['ExclusiveStartKey'] = last_key
    return items
