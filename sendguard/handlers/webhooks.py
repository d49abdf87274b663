"""Recurring provider webhook configuration check."""


async def validate_webhooks(ctx, payload):
    """Ask the provider to validate webhook delivery for each connected owner."""
    logger = ctx["logger"]
    credentials = ctx["credentials"]

    for owner_id in await credentials.store.list_connection_owners():
        try:
            result = await credentials.validate_webhook(owner_id)
        except Exception as e:
            logger.warning(
                "validate-webhooks job failed for owner",
                extra={"owner_id": owner_id, "error": str(e)},
            )
            continue

        if not result.ok:
            logger.warning(
                "webhook validation reported a problem",
                extra={"owner_id": owner_id, "provider_message": result.message},
            )
