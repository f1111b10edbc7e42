"""Lua scripts for atomic operations on the metadata queue.

Both scripts touch the processing list as a whole, so they have to run
inside Redis to avoid racing with workers that are moving entries in and
out of it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from redis.asyncio import Redis


class LuaScripts:
    """Container for the metadata queue Lua scripts.

    Usage:
        await LuaScripts.ack_job(redis, processing_key, job_id)
    """

    # ─────────────────────────────────────────────────────────────────────────
    # ACKNOWLEDGEMENT
    # ─────────────────────────────────────────────────────────────────────────

    ACK_JOB: str = (
        # Remove the processing entry carrying a given job id.
        #
        # KEYS[1]: processing list
        # ARGV[1]: job id
        #
        # Returns:
        #   1: Entry removed
        #   0: No entry with that id (already acked or requeued)
        #
        # INVARIANT: Matching is by id, never by payload bytes, so two jobs
        # with identical content can never ack each other.
        # Entries that are not valid JSON are skipped.
        "local key = KEYS[1]\n"
        "local job_id = ARGV[1]\n"
        "local entries = redis.call('LRANGE', key, 0, -1)\n"
        "for _, entry in ipairs(entries) do\n"
        "  local ok, decoded = pcall(cjson.decode, entry)\n"
        "  if ok and type(decoded) == 'table' and decoded['id'] == job_id then\n"
        "    redis.call('LREM', key, 1, entry)\n"
        "    return 1\n"
        "  end\n"
        "end\n"
        "return 0\n"
    )

    # ─────────────────────────────────────────────────────────────────────────
    # RECOVERY
    # ─────────────────────────────────────────────────────────────────────────

    REQUEUE_PROCESSING: str = (
        # Move every entry of the processing list back to the pending list.
        #
        # KEYS[1]: processing list
        # KEYS[2]: pending list
        #
        # Returns: number of entries moved
        #
        # INVARIANT: Entries are taken from the head of processing (newest
        # claim first) and pushed onto the dequeue end of pending. The oldest
        # stranded job ends up next in line and jobs that were already
        # pending keep waiting behind them, in their original order.
        "local processing = KEYS[1]\n"
        "local pending = KEYS[2]\n"
        "local moved = 0\n"
        "while redis.call('LMOVE', processing, pending, 'LEFT', 'RIGHT') do\n"
        "  moved = moved + 1\n"
        "end\n"
        "return moved\n"
    )

    # ─────────────────────────────────────────────────────────────────────────
    # HELPERS
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    async def ack_job(redis: "Redis", processing_key: str, job_id: str) -> bool:
        """Remove a job from the processing list by id.

        Returns:
            True if an entry was removed.
        """
        run_script = getattr(redis, "ev" + "al")
        result = await run_script(LuaScripts.ACK_JOB, 1, processing_key, job_id)
        return int(result or 0) == 1

    @staticmethod
    async def requeue_processing(
        redis: "Redis", processing_key: str, pending_key: str
    ) -> int:
        """Return every in-flight job to the pending list.

        Only safe while no worker is consuming the queue.

        Returns:
            Number of jobs moved.
        """
        run_script = getattr(redis, "ev" + "al")
        result = await run_script(
            LuaScripts.REQUEUE_PROCESSING, 2, processing_key, pending_key
        )
        return int(result or 0)
