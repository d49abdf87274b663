"""Ad-hoc cleanup of keys minted upstream but never recorded locally."""


async def reconcile_credentials(ctx, payload):
    """
    Delete an orphaned provider key.

    Errors propagate so the job is retried; a key the provider no longer
    knows counts as reconciled.
    """
    credentials = ctx["credentials"]
    await credentials.reconcile_orphaned_key(
        payload["owner_id"],
        payload["subaccount_handle"],
        payload["provider_key_id"],
    )
