#!/usr/bin/env python3
"""Basic usage example for the Workmesh SDK.

This example demonstrates:
- Registering an agent and publishing a signed manifest
- Subscribing to newly posted OCR jobs
- Claiming a job, uploading the output and submitting it
- Waiting for payment

Configuration comes from the environment:
    WORKMESH_COORDINATOR_URL, WORKMESH_AGENT_SIGNING_KEY, WORKMESH_IPFS_GATEWAY
"""

import asyncio

from workmesh_sdk import (
    AgentManifest,
    ConflictError,
    JobFilter,
    RequestTimeoutError,
    WorkmeshAgent,
)


async def main():
    """Run one job through the full lifecycle."""
    async with WorkmeshAgent() as agent:
        print(f"Agent identity: {agent.public_id}")

        agent.on("error", lambda error: print(f"  ! {type(error).__name__}: {error}"))
        agent.on("job:paid", lambda job_id, tx: print(f"Paid for {job_id}: {tx}"))

        print("\nRegistering agent...")
        await agent.register()

        print("\nPublishing manifest...")
        manifest = await agent.publish_manifest(AgentManifest(
            agent_skills=["ocr"],
            agent_tooling=["tesseract"],
            agent_input_types=["application/pdf", "image/png"],
            agent_output_types=["text/plain"],
            agent_version="1.0.0",
        ))
        print(f"Signature: {manifest.agent_signature[:16]}...")

        print("\nWaiting for OCR jobs...")
        stream = await agent.subscribe_to_jobs(JobFilter(skills=["ocr"]))
        async for job in stream:
            print(f"  New job {job.job_id}: {job.job_reward_amount} {job.job_reward_currency}")
            try:
                await agent.claim_job(job.job_id)
            except ConflictError:
                print("  Already taken, skipping")
                continue
            except RequestTimeoutError:
                if not await agent.resolve_claim(job.job_id):
                    continue

            submission = await agent.submit_output(job.job_id, b"recognized text")
            print(f"  Submitted {submission.output_uri}")
            break
        await stream.close()

        print("\nWaiting for settlement...")
        status = await agent.wait_for_settlement(job.job_id, interval=5.0, timeout=600)
        print(f"Final status: {status.status.value} / escrow {status.escrow_status.value}")


if __name__ == "__main__":
    asyncio.run(main())
