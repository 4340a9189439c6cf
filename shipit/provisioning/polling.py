"""Poll loops and fan-out helpers shared by providers and the orchestrator."""

import asyncio
import logging

from shipit.errors import ProvisionTimeoutError

logger = logging.getLogger(__name__)


async def poll_until(fetch, ready, what, timeout, interval):
    """Call *fetch* every *interval* seconds until ``ready(result)`` is true.

    Errors raised by *fetch* propagate unchanged. *timeout* is a hard
    wall-clock limit: a fetch still in flight when it runs out is cancelled
    and ProvisionTimeoutError is raised instead.

    Returns:
        The first result that satisfied *ready*.
    """
    try:
        async with asyncio.timeout(timeout):
            while True:
                result = await fetch()
                if ready(result):
                    return result
                await asyncio.sleep(interval)
    except TimeoutError:
        logger.error(f"Timeout after {timeout:g}s waiting for {what}")
        raise ProvisionTimeoutError(what, timeout) from None


async def gather_fail_fast(*aws):
    """Run awaitables concurrently; the first failure cancels the rest and is raised.

    Results come back in argument order, like asyncio.gather. Only for
    read-only waits: anything that creates a resource belongs in gather_settled.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        failed = [t for t in tasks if t in done and not t.cancelled() and t.exception() is not None]
        if failed:
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise failed[0].exception()
        return [t.result() for t in tasks]
    except asyncio.CancelledError:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def gather_settled(*aws):
    """Run awaitables concurrently and let every one finish before failing.

    A failure does not cancel its siblings, so side effects of calls that
    were already accepted (a server id being recorded) still happen. Once
    all have settled, the first failure in argument order is raised.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for r in results:
        if isinstance(r, BaseException):
            raise r
    return results
