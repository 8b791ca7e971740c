"""
Policywrap - resilience policies for database calls.

Retry with back-off, circuit breaking, timeouts and fallback, selected with
a fluent builder and applied by a sync or async executor:

    >>> from policywrap import PolicyBuilder
    >>> executor = (
    ...     PolicyBuilder()
    ...     .use_async_executor_with_shared_policies("orders-db")
    ...     .with_default_policies()
    ...     .with_transaction()
    ...     .build()
    ... )
    >>> rows = await executor.execute_async(fetch_orders)
"""

__version__ = "0.1.0"

from policywrap.core import *  # noqa
from policywrap.execution import *  # noqa
