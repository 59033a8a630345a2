"""
Procedural mission generator.

Synthesizes self-contained missions for the mission pool:

- Topology: a client network with one or more file servers, plus a backup
  server or a second network where the archetype needs one
- Objectives: connect -> scan -> file operations, ending in verification
- Numbers: time limit from objective count, payout from objectives, client
  tier, location, arc position, data size and deadline
- Messages: briefing with credential attachments, success/failure consequences

Every objective target refers to an entity present in the generated topology.
Ids are unique for the lifetime of the generator.
"""

from __future__ import annotations

import itertools
import logging
import math
import random
import re
from dataclasses import dataclass, field

from ..config import EngineConfig
from ..state.schema import (
    Consequence,
    Consequences,
    Difficulty,
    Extension,
    FileEntry,
    FileSystem,
    Message,
    MissionArchetype,
    MissionDefinition,
    Network,
    Objective,
    ObjectiveType,
    verification_objective,
)
from .clients import Client, ClientRoster, Storyline

logger = logging.getLogger(__name__)


# ─── Content Tables ─────────────────────────────────────────

FILE_NAMES: dict[str, list[str]] = {
    "banking": ["ledger_q1.db", "ledger_q2.db", "accounts_master.db", "loan_register.xlsx",
                "audit_trail.log", "wire_transfers.csv", "branch_report.pdf", "kyc_records.db"],
    "government": ["permits_2023.db", "council_minutes.pdf", "zoning_map.dwg", "census_extract.csv",
                   "budget_draft.xlsx", "records_index.db", "ordinance_archive.pdf", "tax_rolls.db"],
    "healthcare": ["patient_index.db", "lab_results.csv", "imaging_catalog.db", "pharmacy_log.log",
                   "staff_roster.xlsx", "billing_codes.csv", "trial_data.db", "consent_forms.pdf"],
    "corporate": ["crm_export.csv", "payroll_2024.xlsx", "inventory.db", "contracts.pdf",
                  "product_specs.docx", "sales_pipeline.xlsx", "hr_records.db", "board_deck.pptx"],
    "utilities": ["scada_config.cfg", "meter_readings.csv", "grid_topology.db", "outage_log.log",
                  "maintenance_plan.xlsx", "turbine_telemetry.db", "asset_register.csv", "safety_audit.pdf"],
    "shipping": ["manifest_export.csv", "route_plans.db", "customs_forms.pdf", "fleet_status.xlsx",
                 "tracking_events.log", "warehouse_stock.db", "invoices_q3.csv", "crew_roster.xlsx"],
    "emergency": ["dispatch_log.log", "incident_reports.db", "unit_locations.csv", "call_records.db",
                  "shift_schedule.xlsx", "hazmat_registry.pdf", "radio_codes.cfg", "response_times.csv"],
    "nonprofit": ["donor_list.db", "grant_tracker.xlsx", "volunteer_roster.csv", "field_notes.docx",
                  "sensor_archive.db", "annual_report.pdf", "inventory_log.log", "supply_orders.csv"],
    "cultural": ["collection_catalog.db", "exhibit_plans.pdf", "scan_archive.tif", "loan_agreements.pdf",
                 "visitor_stats.csv", "provenance_notes.docx", "conservation_log.log", "membership.db"],
}
GENERIC_FILE_NAMES = ["backup_index.db", "notes.txt", "report.pdf", "export.csv",
                      "archive.zip", "settings.cfg", "summary.docx", "data_dump.db"]

# (min, max) size in MB by extension
FILE_SIZE_MB: dict[str, tuple[float, float]] = {
    "db": (40, 400), "zip": (50, 300), "tif": (20, 120), "dwg": (5, 40),
    "pdf": (0.5, 15), "xlsx": (0.2, 8), "pptx": (2, 25), "docx": (0.1, 3),
    "csv": (1, 60), "log": (1, 80), "cfg": (0.01, 0.2), "txt": (0.01, 0.5),
}

MB = 1024 * 1024

SUCCESS_LINES = [
    "Excellent work! The task has been completed to our satisfaction. Payment has been authorized.",
    "Thank you for your efficient work. We're pleased with the results and have processed your payment.",
    "Great job on completing the mission. Your professionalism is appreciated. Payment attached.",
]
FAILURE_LINES = [
    "We're disappointed that you were unable to complete the assigned task. We may need to reconsider future engagements.",
    "The mission was not completed as requested. This has caused significant inconvenience to our operations.",
]
ARCHETYPE_TITLES = {
    MissionArchetype.REPAIR: "File Repair",
    MissionArchetype.BACKUP: "Data Backup",
    MissionArchetype.TRANSFER: "Data Transfer",
}
ARCHETYPE_BRIEFS = {
    MissionArchetype.REPAIR: "Several files on our servers have become corrupted and need to be repaired.",
    MissionArchetype.BACKUP: "We need a backup of critical files before scheduled maintenance.",
    MissionArchetype.TRANSFER: "We need files moved from our primary site to a partner network.",
}


def slugify(name: str) -> str:
    """Client name to hostname-safe prefix."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:16].strip("-")


def format_size(size_bytes: int) -> str:
    if size_bytes >= 1024 * MB:
        return f"{size_bytes / (1024 * MB):.1f} GB"
    if size_bytes >= MB:
        return f"{size_bytes / MB:.1f} MB"
    return f"{max(1, size_bytes // 1024)} KB"


def calculate_time_limit(objective_count: int, config: EngineConfig | None = None) -> int:
    """Minutes allowed: base + per-objective, clamped to [min, max]."""
    cfg = (config or EngineConfig()).time_limit
    calculated = cfg.base_minutes + math.floor(objective_count * cfg.per_objective)
    return min(cfg.max_minutes, max(cfg.min_minutes, calculated))


def calculate_payout(
    objective_count: int,
    time_limit_minutes: int | None,
    client: Client,
    total_data_bytes: int = 0,
    arc_sequence: int | None = None,
    config: EngineConfig | None = None,
) -> int:
    """
    Mission payout.

    base per objective x objectives x client tier x location x arc bonus,
    plus a data-size bonus and a bonus for tighter deadlines.
    """
    cfg = config or EngineConfig()
    payout = cfg.payout
    amount = payout.base_per_objective * objective_count * payout.tier(client.client_type)
    amount *= payout.location(client.location.type)
    if arc_sequence and arc_sequence > 1:
        amount *= cfg.chain.escalation ** (arc_sequence - 1)
    if total_data_bytes > 0:
        amount += math.floor(total_data_bytes / (100 * MB) * payout.data_bonus_per_100mb)
    if time_limit_minutes:
        amount += payout.time_bonus * (10 / time_limit_minutes)
    return math.floor(amount)


def difficulty_for(target_count: int) -> Difficulty:
    if target_count <= 5:
        return Difficulty.EASY
    if target_count <= 7:
        return Difficulty.MEDIUM
    return Difficulty.HARD


# ─── Data Structures ────────────────────────────────────────

@dataclass
class ArcContext:
    """Position of a generated mission inside an arc."""
    arc_id: str
    arc_name: str
    sequence: int
    total: int
    previous_mission_id: str | None = None
    narrative: str = ""
    referral: str | None = None


@dataclass
class Topology:
    """Generated network layout for one mission."""
    primary: Network
    devices: list[FileSystem]
    target_files: list[str]
    total_data_bytes: int
    secondary: Network | None = None
    destination: FileSystem | None = None   # Where pasted files must land
    networks: list[Network] = field(default_factory=list)


# ─── Generator ──────────────────────────────────────────────

class MissionGenerator:
    """
    Builds procedural MissionDefinitions.

    Usage:
        generator = MissionGenerator(ClientRoster.load())
        mission = generator.generate_mission("harbor-credit-union", archetype="backup")
    """

    def __init__(
        self,
        roster: ClientRoster,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.roster = roster
        self.config = config or EngineConfig()
        self.rng = rng or random.Random()
        self._mission_ids = itertools.count(1)
        self._arc_ids = itertools.count(1)
        self._file_systems = itertools.count(1)
        self._extensions = itertools.count(1)
        self._used_subnets: set[str] = set()

    # -------------------------------------------------------------------------
    # Topology
    # -------------------------------------------------------------------------

    def _subnet(self) -> str:
        """Unique /24 prefix like '10.42.7'."""
        while True:
            prefix = f"10.{self.rng.randint(1, 254)}.{self.rng.randint(0, 254)}"
            if prefix not in self._used_subnets:
                self._used_subnets.add(prefix)
                return prefix

    def _file(self, name: str, corrupted: bool = False, target: bool = False) -> FileEntry:
        ext = name.rsplit(".", 1)[-1].lower()
        low, high = FILE_SIZE_MB.get(ext, (0.1, 10))
        size_bytes = int(self.rng.uniform(low, high) * MB)
        return FileEntry(
            name=name,
            size=format_size(size_bytes),
            size_bytes=size_bytes,
            corrupted=corrupted,
            target_file=target,
        )

    def _file_system(self, client: Client, hostname: str, ip: str, files: list[FileEntry]) -> FileSystem:
        return FileSystem(
            id=f"fs-{client.id}-{next(self._file_systems)}",
            ip=ip,
            name=hostname,
            files=files,
        )

    def _network(self, client: Client, suffix: str, prefix: str) -> Network:
        name = f"{slugify(client.name)}-{suffix}"
        if client.location.type in ("offshore", "vessel", "remote") and client.location.region:
            name = f"{slugify(client.name)}-{slugify(client.location.region)}-{suffix}"
        return Network(
            network_id=f"net-{slugify(client.name)}-{prefix.replace('.', '-')}",
            network_name=name,
            address=f"{prefix}.0/24",
            bandwidth=self.rng.choice([25, 50, 100, 250]),
        )

    def build_topology(self, client: Client, archetype: MissionArchetype, target_count: int) -> Topology:
        """Primary network with file servers, plus a destination where the archetype needs one."""
        pool = list(FILE_NAMES.get(client.industry, GENERIC_FILE_NAMES))
        extra = [n for n in GENERIC_FILE_NAMES if n not in pool]
        names = self.rng.sample(pool + extra, k=min(len(pool + extra), target_count + 3))
        targets, decoys = names[:target_count], names[target_count:]

        difficulty = difficulty_for(target_count)
        if difficulty == Difficulty.EASY:
            device_count = 1
        elif difficulty == Difficulty.MEDIUM:
            device_count = self.rng.randint(1, 2)
        else:
            device_count = self.rng.randint(2, 3)

        prefix = self._subnet()
        primary = self._network(client, "network", prefix)
        corrupted = archetype == MissionArchetype.REPAIR
        slug = slugify(client.name)

        devices: list[FileSystem] = []
        for i in range(device_count):
            share = targets[i::device_count]
            files = [self._file(n, corrupted=corrupted, target=True) for n in share]
            files += [self._file(n) for n in decoys[i::device_count]]
            devices.append(self._file_system(client, f"{slug}-fileserver-{i + 1:02d}", f"{prefix}.{10 + i}", files))
        primary.file_systems = devices

        topo = Topology(
            primary=primary,
            devices=devices,
            target_files=targets,
            total_data_bytes=sum(f.size_bytes for d in devices for f in d.files if f.target_file),
        )

        if archetype == MissionArchetype.BACKUP and self.rng.random() < 0.5:
            # Backup server on the same network
            backup = self._file_system(client, f"{slug}-backup-01", f"{prefix}.50", [])
            primary.file_systems.append(backup)
            topo.destination = backup
        elif archetype in (MissionArchetype.BACKUP, MissionArchetype.TRANSFER):
            second = self._subnet()
            suffix = "backup" if archetype == MissionArchetype.BACKUP else "partner"
            secondary = self._network(client, suffix, second)
            dest = self._file_system(client, f"{slug}-{suffix}-01", f"{second}.20", [])
            secondary.file_systems = [dest]
            topo.secondary = secondary
            topo.destination = dest

        topo.networks = [primary] + ([topo.secondary] if topo.secondary else [])
        return topo

    # -------------------------------------------------------------------------
    # Objectives
    # -------------------------------------------------------------------------

    def build_objectives(self, archetype: MissionArchetype, topo: Topology) -> list[Objective]:
        """Ordered objectives for an archetype, ending in verification."""
        count = len(topo.target_files)
        label = "the file server" if len(topo.devices) == 1 else f"{len(topo.devices)} file servers"
        objectives = [
            Objective(
                id="obj-1",
                description=f"Connect to {topo.primary.network_name} network",
                type=ObjectiveType.NETWORK_CONNECTION,
                target=topo.primary.network_id,
            ),
            Objective(
                id="obj-2",
                description=f"Use Network Scanner to locate {label}",
                type=ObjectiveType.NETWORK_SCAN,
                target=topo.primary.network_id,
                expected_results=[d.ip for d in topo.devices],
            ),
        ]

        if archetype == MissionArchetype.REPAIR:
            objectives.append(Objective(
                id="obj-3",
                description=f"Repair {count} corrupted files",
                type=ObjectiveType.FILE_OPERATION,
                operation="repair",
                target_files=list(topo.target_files),
            ))
        else:
            objectives.append(Objective(
                id="obj-3",
                description=f"Copy {count} files",
                type=ObjectiveType.FILE_OPERATION,
                operation="copy",
                target_files=list(topo.target_files),
            ))
            if topo.secondary is not None:
                objectives += [
                    Objective(
                        id=f"obj-{len(objectives) + 1}",
                        description=f"Connect to {topo.secondary.network_name} network",
                        type=ObjectiveType.NETWORK_CONNECTION,
                        target=topo.secondary.network_id,
                    ),
                    Objective(
                        id=f"obj-{len(objectives) + 2}",
                        description=f"Use Network Scanner to find {topo.destination.name}",
                        type=ObjectiveType.NETWORK_SCAN,
                        target=topo.secondary.network_id,
                        expected_result=topo.destination.name,
                    ),
                ]
            objectives.append(Objective(
                id=f"obj-{len(objectives) + 1}",
                description=f"Paste {count} files to {topo.destination.name}",
                type=ObjectiveType.FILE_OPERATION,
                operation="paste",
                target_files=list(topo.target_files),
                destination=topo.destination.ip,
            ))

        objectives.append(verification_objective())
        return objectives

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def _consequences(self, client: Client, mission_id: str, payout: int, difficulty: Difficulty) -> Consequences:
        rep = self.config.reputation
        penalty = self.config.payout.failure_penalty.get(difficulty.value, 0.5)
        success = Consequence(
            credits=payout,
            reputation=rep.success.get(difficulty.value, 1),
            messages=[Message(
                id=f"msg-success-{mission_id}",
                sender=client.name,
                subject="Mission Complete - Payment Enclosed",
                body=f"Dear {{username}},\n\n{self.rng.choice(SUCCESS_LINES)}\n\nSincerely,\n{client.name}",
                attachments=[{"type": "cheque", "amount": payout, "description": "Payment for completed mission"}],
                delay=3000,
            )],
        )
        failure = Consequence(
            credits=-math.floor(payout * penalty),
            reputation=rep.failure.get(difficulty.value, -1),
            messages=[Message(
                id=f"msg-failure-{mission_id}",
                sender=client.name,
                subject="Mission Failed",
                body=f"Dear {{username}},\n\n{self.rng.choice(FAILURE_LINES)}\n\nSincerely,\n{client.name}",
                delay=2000,
            )],
        )
        return Consequences(success=success, failure=failure)

    def _briefing(
        self,
        client: Client,
        mission_id: str,
        archetype: MissionArchetype,
        topo: Topology,
        time_limit: int | None,
        arc: ArcContext | None,
    ) -> Message:
        lines = []
        if arc and arc.referral:
            lines.append(arc.referral)
        lines.append(arc.narrative if arc and arc.narrative else ARCHETYPE_BRIEFS[archetype])
        lines.append(f"Files involved: {len(topo.target_files)} ({format_size(topo.total_data_bytes)}).")
        if time_limit:
            lines.append(f"This job must be completed within {time_limit} minutes of acceptance.")
        lines.append("Network credentials are attached.")
        return Message(
            id=f"msg-briefing-{mission_id}",
            sender=client.name,
            subject=f"{ARCHETYPE_TITLES[archetype]} Request",
            body=f"Dear {{username}},\n\n" + "\n\n".join(lines) + f"\n\nSincerely,\n{client.name}",
            attachments=[n.credential_attachment().model_dump(mode="json") for n in topo.networks],
        )

    # -------------------------------------------------------------------------
    # Missions and Arcs
    # -------------------------------------------------------------------------

    def pick_archetype(self) -> MissionArchetype:
        weights = self.config.archetype_weights
        kinds = [MissionArchetype(k) for k in weights]
        return self.rng.choices(kinds, weights=list(weights.values()), k=1)[0]

    def generate_mission(
        self,
        client_id: str,
        archetype: MissionArchetype | str | None = None,
        timed: bool | None = None,
        arc: ArcContext | None = None,
        now: float | None = None,
    ) -> MissionDefinition | None:
        """
        Generate one mission for a client.

        Args:
            client_id: Roster id of the posting client
            archetype: repair, backup or transfer (random when None)
            timed: Force a deadline on or off (random when None)
            arc: Arc placement, when generated as part of an arc
            now: Game time stamped on the definition

        Returns:
            MissionDefinition, or None if the client is unknown
        """
        client = self.roster.get(client_id)
        if client is None:
            logger.warning(f"Client not found: {client_id}")
            return None

        kind = MissionArchetype(archetype) if archetype else self.pick_archetype()
        target_count = self.rng.randint(4, 8)
        difficulty = difficulty_for(target_count)
        topo = self.build_topology(client, kind, target_count)
        objectives = self.build_objectives(kind, topo)

        if timed is None:
            timed = self.rng.random() < self.config.time_limit.chance
        time_limit = calculate_time_limit(len(objectives), self.config) if timed else None
        payout = calculate_payout(
            len(objectives), time_limit, client, topo.total_data_bytes,
            arc.sequence if arc else None, self.config,
        )

        mission_id = f"{kind.value}-{client.id}-{next(self._mission_ids)}"
        return MissionDefinition(
            mission_id=mission_id,
            title=f"{ARCHETYPE_TITLES[kind]} for {client.name}",
            objectives=objectives,
            consequences=self._consequences(client, mission_id, payout, difficulty),
            networks=topo.networks,
            briefing_message=self._briefing(client, mission_id, kind, topo, time_limit, arc),
            client=client.name,
            client_id=client.id,
            client_type=client.client_type,
            min_reputation=client.min_reputation,
            difficulty=difficulty,
            archetype=kind,
            base_payout=payout,
            time_limit_minutes=time_limit,
            arc_id=arc.arc_id if arc else None,
            arc_name=arc.arc_name if arc else None,
            arc_sequence=arc.sequence if arc else None,
            arc_total=arc.total if arc else None,
            requires_completed_mission=arc.previous_mission_id if arc else None,
            target_files=topo.target_files,
            total_data_bytes=topo.total_data_bytes,
            generated_at=now,
        )

    def new_arc_id(self) -> str:
        return f"arc-{next(self._arc_ids)}-{self.rng.getrandbits(24):06x}"

    def generate_arc(
        self,
        storyline: Storyline,
        clients: list[Client],
        now: float | None = None,
    ) -> list[MissionDefinition] | None:
        """
        Generate every part of an arc. Part i is posted by clients[i].

        Returns:
            Missions in arc order, or None if there are too few clients
        """
        chain = self.config.chain
        if not chain.min_length <= storyline.length <= chain.max_length:
            logger.warning(f"Storyline {storyline.id} length {storyline.length} is outside chain bounds")
            return None
        if len(clients) < storyline.length:
            logger.warning(f"Not enough clients for arc {storyline.id}")
            return None

        arc_id = self.new_arc_id()
        missions: list[MissionDefinition] = []
        previous: str | None = None

        for i, step in enumerate(storyline.mission_sequence):
            context = ArcContext(
                arc_id=arc_id,
                arc_name=storyline.name,
                sequence=i + 1,
                total=storyline.length,
                previous_mission_id=previous,
                narrative=step.narrative,
                referral=step.referral,
            )
            mission = self.generate_mission(clients[i].id, step.archetype, step.timed, context, now)
            if mission is None:
                return None
            mission.title = f"{storyline.name} ({i + 1}/{storyline.length}): {mission.title}"
            missions.append(mission)
            previous = mission.mission_id

        logger.info(f"Generated arc {storyline.name} ({arc_id}, {len(missions)} parts)")
        return missions

    # -------------------------------------------------------------------------
    # Extensions
    # -------------------------------------------------------------------------

    def generate_extension(self, mission: MissionDefinition, is_post_completion: bool = False) -> Extension | None:
        """
        Extra objectives for a mission in progress.

        more_files adds target files on an existing file server; new_network
        adds a network (with credentials) holding the new files.
        """
        client = self.roster.get(mission.client_id)
        if client is None or not mission.networks or not mission.networks[0].file_systems:
            return None

        cfg = self.config.extension
        low, high = cfg.post_completion_multiplier if is_post_completion else cfg.mid_mission_multiplier
        multiplier = round(self.rng.uniform(low, high), 2)
        serial = next(self._extensions)

        existing = {f.name for n in mission.networks for fs in n.file_systems for f in fs.files}
        pool = list(dict.fromkeys(FILE_NAMES.get(client.industry, []) + GENERIC_FILE_NAMES))
        candidates = [f"ext{serial}_{n}" for n in pool if f"ext{serial}_{n}" not in existing]
        names = self.rng.sample(candidates, k=min(len(candidates), self.rng.randint(2, 3)))
        repair = mission.archetype == MissionArchetype.REPAIR
        files = [self._file(n, corrupted=repair, target=True) for n in names]

        objectives: list[Objective] = []
        network = None
        file_system_id = None
        if self.rng.random() < cfg.new_network_chance:
            pattern = "new_network"
            prefix = self._subnet()
            network = self._network(client, f"annex{serial}", prefix)
            server = self._file_system(client, f"{slugify(client.name)}-annex-{serial:02d}", f"{prefix}.10", files)
            network.file_systems = [server]
            objectives += [
                Objective(
                    id=f"obj-ext{serial}-connect",
                    description=f"Connect to {network.network_name} network",
                    type=ObjectiveType.NETWORK_CONNECTION,
                    target=network.network_id,
                ),
                Objective(
                    id=f"obj-ext{serial}-scan",
                    description=f"Use Network Scanner to locate {server.name}",
                    type=ObjectiveType.NETWORK_SCAN,
                    target=network.network_id,
                    expected_result=server.ip,
                ),
            ]
        else:
            pattern = "more_files"
            file_system_id = mission.networks[0].file_systems[0].id

        if repair:
            objectives.append(Objective(
                id=f"obj-ext{serial}-repair",
                description=f"Repair {len(names)} additional files",
                type=ObjectiveType.FILE_OPERATION,
                operation="repair",
                target_files=names,
            ))
        else:
            paste = next(
                (o for o in mission.objectives if o.type == ObjectiveType.FILE_OPERATION and o.operation == "paste"),
                None,
            )
            objectives.append(Objective(
                id=f"obj-ext{serial}-copy",
                description=f"Copy {len(names)} additional files",
                type=ObjectiveType.FILE_OPERATION,
                operation="copy",
                target_files=names,
            ))
            if paste is not None:
                objectives.append(Objective(
                    id=f"obj-ext{serial}-paste",
                    description=f"Paste {len(names)} additional files",
                    type=ObjectiveType.FILE_OPERATION,
                    operation="paste",
                    target_files=names,
                    destination=paste.destination,
                ))

        return Extension(
            pattern=pattern,
            objectives=objectives,
            payout_multiplier=multiplier,
            is_post_completion=is_post_completion,
            network=network,
            file_system_id=file_system_id,
            files=[] if network else files,
            credential_attachment=network.credential_attachment() if network else None,
        )
