"""
This module provides compatibility for different async libs. Currently
only supporting asyncio.
"""

import asyncio


async def sleep(seconds):
    """ An async sleep function. Uses asyncio. A zero sleep lets other
    tasks run.
    """
    await asyncio.sleep(seconds)


async def wait_for_any_then_cancel_the_rest(*coroutines):
    """ Wait for any of the given coroutines to complete (or fail), and then
    cancel all the other co-routines. Returns the list of tasks (in the
    order of the given coroutines) once the cancelled ones have finished too,
    so that their cleanup code has run.
    """
    tasks = [asyncio.ensure_future(co) for co in coroutines]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.wait(pending)
    return tasks
