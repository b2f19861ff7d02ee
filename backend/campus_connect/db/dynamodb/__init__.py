"""DynamoDB access layer for the single-table CampusConnect store.

- boto3 client/resource configuration
- retry/backoff policy and botocore error mapping
- query paging that follows LastEvaluatedKey
- conditional writes, atomic counters and TransactWriteItems helpers

Lifecycle modules never call boto3 directly; they go through repositories,
which go through `DynamoTable`.
"""
