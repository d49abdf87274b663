"""Recurring usage sync from the provider."""


async def sync_usage(ctx, payload):
    """
    Refresh the usage counter of every subaccount.

    Overwriting is idempotent, so a retried run is harmless. One subaccount
    failing is logged and does not stop the others.

    Args:
        ctx: Context dict with job, logger and credentials manager
        payload: Job payload dict (unused)
    """
    logger = ctx["logger"]
    credentials = ctx["credentials"]

    subaccounts = await credentials.store.list_subaccounts()
    for subaccount in subaccounts:
        try:
            await credentials.sync_usage(subaccount.owner_id, subaccount.handle)
        except Exception as e:
            logger.warning(
                "sync-usage job failed for owner",
                extra={"owner_id": subaccount.owner_id, "error": str(e)},
            )
