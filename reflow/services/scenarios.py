import asyncio
import uuid
from datetime import datetime, timezone


def _now():
    return datetime.now(timezone.utc).isoformat()


async def run_claim_race(
    client,
    collectors=("C1", "C2"),
    material_type="Plástico",
    weight="2kg",
    position=(-23.5495, -46.6323),
):
    """Create one material and let several collectors claim it at once.

    Exactly one claim must be accepted and the material must end up with
    that collector; every other claim must come back ignored.
    """
    action_id = str(uuid.uuid4())
    started_at = _now()

    if len(collectors) < 2:
        return {
            "action_id": action_id,
            "action": "claim_race",
            "status": "failed",
            "started_at": started_at,
            "finished_at": _now(),
            "message": "Need at least 2 collectors for a race",
        }

    material = await client.create_material(material_type, weight, position=position)
    material_id = material["id"]

    results = await asyncio.gather(
        *(client.claim(material_id, collector_id=c) for c in collectors),
        return_exceptions=True,
    )

    claims = []
    for collector_id, result in zip(collectors, results):
        if isinstance(result, Exception):
            claims.append({"collector_id": collector_id, "status": "error", "error": str(result)})
        else:
            claims.append({"collector_id": collector_id, "status": result.get("status")})

    winners = [c["collector_id"] for c in claims if c["status"] == "accepted"]
    final = await client.get_material(material_id)
    consistent = len(winners) == 1 and final.get("collectorId") == winners[0]

    return {
        "action_id": action_id,
        "action": "claim_race",
        "status": "completed" if consistent else "partial",
        "started_at": started_at,
        "finished_at": _now(),
        "material_id": material_id,
        "winner": winners[0] if len(winners) == 1 else None,
        "claims": claims,
        "final_status": final.get("status"),
        "final_collector": final.get("collectorId"),
        "consistent": consistent,
    }


async def run_full_lifecycle(
    client,
    collector_id="C1",
    material_type="Metal",
    weight="5kg",
    position=None,
):
    """Create, claim and complete one material, recording each observed status."""
    action_id = str(uuid.uuid4())
    started_at = _now()

    created = await client.create_material(material_type, weight, position=position)
    statuses = [created["status"]]

    claim = await client.claim(created["id"], collector_id=collector_id)
    statuses.append(claim["material"]["status"])

    completion = await client.complete(created["id"])
    statuses.append(completion["material"]["status"])

    expected = ["AVAILABLE", "IN_TRANSIT", "COLLECTED"]
    return {
        "action_id": action_id,
        "action": "full_lifecycle",
        "status": "completed" if statuses == expected else "partial",
        "started_at": started_at,
        "finished_at": _now(),
        "material_id": created["id"],
        "statuses": statuses,
        "collector_id": completion["material"].get("collectorId"),
    }
