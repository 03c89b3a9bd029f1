# This code is copied and modified from
# https://github.com/Martiusweb/asynctest/blob/4b1284d6bab1ae90a6e8d88b882413ebbb7e5dce/asynctest/helpers.py

import asyncio


async def exhaust_callbacks():
    """
    Run the loop until all ready callbacks are executed.

    The coroutine doesn't wait for callbacks scheduled in the future with
    `call_at()` or `call_later()`.
    """
    loop = asyncio.get_running_loop()
    while loop._ready:
        await asyncio.sleep(0)
