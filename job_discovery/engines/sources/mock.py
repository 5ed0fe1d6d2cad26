"""Mock job source for development and demos."""

import random
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from job_discovery.config import get_settings
from job_discovery.db.models import JobSourceType
from job_discovery.engines.sources.base import (
    CampaignSearchCriteria,
    ContractType,
    DiscoveredJob,
    DiscoveryResult,
    HealthCheckResult,
    JobSourceAdapter,
    RemoteType,
)
from job_discovery.engines.sources.matching import format_salary, stable_hash

logger = structlog.get_logger()

MOCK_COMPANIES = [
    "TechGlobal Solutions",
    "StartupIO",
    "FinanceHub",
    "CloudNative Inc",
    "DataDriven Corp",
    "AgileWorks",
    "Innovation Labs",
    "ScaleFast",
    "SecureNet Systems",
    "DevOps Masters",
]

SKILL_SETS: dict[str, list[str]] = {
    "frontend": ["React", "Vue", "Angular", "TypeScript", "JavaScript", "CSS", "HTML", "Redux", "Next.js"],
    "backend": ["Node.js", "Python", "Java", "Go", "Rust", "PostgreSQL", "MongoDB", "Redis", "GraphQL"],
    "fullstack": ["React", "Node.js", "TypeScript", "PostgreSQL", "Docker", "AWS", "CI/CD"],
    "devops": ["Kubernetes", "Docker", "AWS", "GCP", "Azure", "Terraform", "Ansible", "Jenkins", "GitLab CI"],
    "data": ["Python", "SQL", "Spark", "Hadoop", "Machine Learning", "TensorFlow", "Pandas", "Airflow"],
}

SALARY_BANDS: dict[str, tuple[int, int]] = {
    "junior": (35000, 50000),
    "mid": (50000, 75000),
    "senior": (75000, 110000),
    "lead": (100000, 140000),
}

LEVEL_DESCRIPTIONS = {
    "junior": "an entry-level position perfect for developers starting their career",
    "mid": "a mid-level position for experienced developers looking to grow",
    "senior": "a senior position requiring deep expertise and leadership skills",
    "lead": "a leadership role overseeing technical direction and team development",
}

RESPONSIBILITIES = [
    "Design and implement new features",
    "Collaborate with cross-functional teams",
    "Write clean, maintainable code",
    "Participate in code reviews",
    "Contribute to technical documentation",
    "Debug and resolve production issues",
    "Mentor junior team members",
    "Drive technical decisions",
]


def _skill_family(role: str) -> str:
    role = role.lower()
    if any(k in role for k in ("frontend", "react", "vue")):
        return "frontend"
    if any(k in role for k in ("backend", "node", "python")):
        return "backend"
    if any(k in role for k in ("devops", "sre", "cloud")):
        return "devops"
    if any(k in role for k in ("data", "ml", "machine learning")):
        return "data"
    return "fullstack"


def _seniority(role: str) -> str:
    role = role.lower()
    if "senior" in role or "sr" in role:
        return "senior"
    if "junior" in role or "jr" in role:
        return "junior"
    if "lead" in role or "principal" in role:
        return "lead"
    return "mid"


class MockAdapter(JobSourceAdapter):
    """Generates realistic postings without touching the network.

    The generator is seeded with the campaign id, so polling the same
    campaign twice yields the same postings with the same external ids.
    """

    source_name = "mock"
    display_name = "Demo Mode"
    source_type = JobSourceType.MOCK
    supports_auto_apply = False

    def __init__(self, enabled: Optional[bool] = None):
        super().__init__()
        self.enabled = get_settings().mock_jobs_enabled if enabled is None else enabled
        if self.enabled:
            logger.info("Mock adapter enabled (development/demo mode)")

    async def discover_jobs(self, criteria: CampaignSearchCriteria) -> DiscoveryResult:
        started = time.monotonic()

        if not self.enabled:
            logger.warning("Mock adapter called but not enabled")
            return self._result([], started, errors=["Mock adapter is disabled in production"])

        jobs = self._generate_jobs(criteria)
        logger.info("Generated mock jobs", campaign_id=criteria.campaign_id, count=len(jobs))
        return self._result(jobs, started)

    async def health_check(self) -> HealthCheckResult:
        return HealthCheckResult(
            healthy=self.enabled,
            message="Mock adapter ready" if self.enabled else "Mock adapter disabled in production",
        )

    def _generate_jobs(self, criteria: CampaignSearchCriteria) -> list[DiscoveredJob]:
        rng = random.Random(criteria.campaign_id)
        roles = criteria.target_roles or ["Software Engineer"]
        locations = criteria.target_locations or ["Remote"]
        contract_types = criteria.contract_types or [
            ContractType.FULL_TIME.value,
            ContractType.CONTRACT.value,
        ]
        remote_types = (
            [RemoteType.REMOTE.value, RemoteType.HYBRID.value, RemoteType.ON_SITE.value]
            if criteria.remote_ok
            else [RemoteType.ON_SITE.value, RemoteType.HYBRID.value]
        )
        now = datetime.now(timezone.utc)

        jobs = []
        for i in range(rng.randint(5, 15)):
            role = rng.choice(roles)
            location = rng.choice(locations)
            company = rng.choice(MOCK_COMPANIES)

            skills = SKILL_SETS[_skill_family(role)]
            requirements = rng.sample(skills, k=min(len(skills), rng.randint(4, 7)))

            level = _seniority(role)
            low, high = SALARY_BANDS[level]
            remote_type = rng.choice(remote_types)

            external_id = f"mock-{stable_hash(f'{criteria.campaign_id}:{i}:{role}:{company}')}"

            jobs.append(
                DiscoveredJob(
                    external_id=external_id,
                    title=role,
                    company=company,
                    location="Remote" if remote_type == RemoteType.REMOTE.value else location,
                    description=self._describe(rng, role, company, requirements, level),
                    requirements=requirements,
                    salary=format_salary(low, high, "EUR"),
                    contract_type=rng.choice(contract_types),
                    remote_type=remote_type,
                    url=f"https://demo.jobdiscovery.dev/jobs/{external_id}",
                    posted_at=now - timedelta(hours=rng.uniform(0, 7 * 24)),
                    application_email=f"careers@{company.lower().replace(' ', '')}.demo",
                )
            )
        return jobs

    def _describe(
        self,
        rng: random.Random,
        role: str,
        company: str,
        requirements: list[str],
        level: str,
    ) -> str:
        count = 6 if level in ("lead", "senior") else 4
        duties = "\n".join(f"- {r}" for r in rng.sample(RESPONSIBILITIES, k=count))
        must_have = "\n".join(f"- {r}" for r in requirements[:4])
        nice_to_have = "\n".join(f"- {r}" for r in requirements[4:]) or (
            "- Experience with agile methodologies"
        )

        return (
            f"{company} is looking for a {role} to join our team. "
            f"This is {LEVEL_DESCRIPTIONS[level]}.\n\n"
            "About the Role:\n"
            f"As a {role}, you will be working on cutting-edge projects using modern "
            "technologies. You'll be part of a collaborative team that values innovation "
            "and quality.\n\n"
            f"Responsibilities:\n{duties}\n\n"
            f"Requirements:\n{must_have}\n"
            "- Strong problem-solving skills\n"
            "- Excellent communication skills\n\n"
            f"Nice to have:\n{nice_to_have}\n\n"
            "We offer competitive salary, flexible work arrangements, and excellent benefits.\n\n"
            "---\n"
            "[DEMO MODE] This is a simulated job posting for testing purposes."
        )
