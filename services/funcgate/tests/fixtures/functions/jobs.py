import asyncio


async def handler(a, b="x"):
    """
    Queues a job.
    @background params a
    @param {string} a
    @param {string} b
    @returns {string}
    """
    await asyncio.sleep(0)
    return a + b
