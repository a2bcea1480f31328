"""
cloudprovision - Basic Usage Examples

This file demonstrates basic usage patterns for the provisioning orchestrator.
"""

import asyncio
import logging

from cloudprovision import (
    ClassifiedError,
    DeploymentStateUnknown,
    DeployStatus,
    ProvisioningOrchestrator,
    ProvisionSettings,
)


# =============================================================================
# Example 1: Producer + Consumer (two-phase apply)
# =============================================================================

async def example_producer_consumer():
    """Deploy a producer service attachment, then connect a consumer to it."""

    orchestrator = ProvisioningOrchestrator(ProvisionSettings(terraform_root="terraform"))

    producer = await orchestrator.deploy(
        "producer",
        {
            "project_id": "my-producer-project",
            "region": "us-central1",
            "allowed_consumer_project_ids": ["my-consumer-project"],
        },
    )
    uri = producer.outputs["service_attachment_uri"]
    print(f"✓ Producer ready: {uri}")

    # consumer is deployed in-process with the producer's service attachment
    managed = await orchestrator.deploy_managed(uri, {"project_id": "my-consumer-project"})
    if managed.succeeded:
        print(f"✓ Consumer endpoint: {managed.consumer.outputs.values}")
    else:
        print(f"✗ Consumer failed: {managed.error}")


# =============================================================================
# Example 2: Cloud SQL with private service connect
# =============================================================================

async def example_cloud_sql():
    """Long-running deploy: accepted/in-progress results are successes with a caveat."""

    orchestrator = ProvisioningOrchestrator()

    try:
        result = await orchestrator.deploy(
            "create-sql",
            {
                "producer_project_id": "my-producer-project",
                "allowed_consumer_project_id": "my-consumer-project",
                "instance_id": "orders-db",
                "default_password": "change-me",
            },
        )
    except ClassifiedError as e:
        print(f"✗ {e.category.value}: {e}")
        return
    except DeploymentStateUnknown as e:
        print(f"? {e}")
        return

    if result.status != DeployStatus.COMPLETED:
        print(f"~ {result.status.value}: {result.caveat}")
        # check again later without re-applying
        ready = await orchestrator.await_async_completion("orders-db", "my-producer-project", max_wait_minutes=10)
        print(f"  PSC enabled: {ready}")
        return

    print(f"✓ Instance {result.outputs['instance_name']} (PSC converged: {result.converged})")


# =============================================================================
# Example 3: Read back outputs and attempt history
# =============================================================================

async def example_outputs():
    orchestrator = ProvisioningOrchestrator()

    record = await orchestrator.get_last_output("create-vm")
    for key in record.keys():
        print(f"  {key}: {record[key]}")

    for attempt in orchestrator.attempt_history("create-vm"):
        print(f"  phase {attempt.phase} attempt {attempt.attempt_number}: {attempt.exit_succeeded}")


# =============================================================================
# Main - Run Examples
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    print("cloudprovision - Usage Examples")
    print("=" * 60)

    print("\n\n# Example 1: Producer + Consumer")
    print("-" * 60)
    asyncio.run(example_producer_consumer())

    # Uncomment to run other examples:

    # print("\n\n# Example 2: Cloud SQL")
    # asyncio.run(example_cloud_sql())

    # print("\n\n# Example 3: Outputs")
    # asyncio.run(example_outputs())

    print("\n\n" + "=" * 60)
    print("Examples completed!")
