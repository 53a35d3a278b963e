from __future__ import annotations

import re

SKILL_VOCABULARY: tuple[str, ...] = (
    "JavaScript",
    "TypeScript",
    "React",
    "Angular",
    "Vue",
    "Node.js",
    "Python",
    "Java",
    "C#",
    "C++",
    "PHP",
    "Ruby",
    "Swift",
    "Kotlin",
    "SQL",
    "MongoDB",
    "PostgreSQL",
    "MySQL",
    "Oracle",
    "NoSQL",
    "AWS",
    "Azure",
    "GCP",
    "Docker",
    "Kubernetes",
    "DevOps",
    "Git",
    "HTML",
    "CSS",
    "Sass",
    "REST API",
    "GraphQL",
    "Agile",
    "Scrum",
    "Kanban",
    "TDD",
    "CI/CD",
    "Machine Learning",
    "Data Analysis",
    "Data Science",
    "AI",
    "Blockchain",
    "IoT",
)

# Lookarounds instead of \b so skills ending in symbols (C#, C++) still match.
_SKILL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (skill, re.compile(rf"(?<!\w){re.escape(skill)}(?!\w)", re.IGNORECASE))
    for skill in SKILL_VOCABULARY
)


def extract_skills(text: str | None) -> set[str]:
    if not text or not text.strip():
        return set()
    return {skill for skill, pattern in _SKILL_PATTERNS if pattern.search(text)}
