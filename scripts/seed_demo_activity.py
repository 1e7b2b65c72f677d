#!/usr/bin/env python3
"""Seed script: fills a running instance with demo engagement data.

RUN:  python scripts/seed_demo_activity.py

Records course views and activity events for a handful of synthetic
learners, refreshes the popularity ranking, runs the daily rollup and
prints what each learner would now be recommended.

Prerequisites:
  - The API must be running: uvicorn engagement.main:app --port 8000
  - Nothing else; without REDIS_URL the data lives in-process and is
    gone on restart.
"""

from __future__ import annotations

import random
import sys

import httpx

BASE_URL = "http://localhost:8000"

COURSES = {
    "bio101": "Introduction to Biology",
    "chem101": "General Chemistry",
    "phys101": "Physics I",
    "math200": "Linear Algebra",
    "ds101": "Data Science Foundations",
    "art100": "Drawing Basics",
    "hist150": "World History",
}
LEARNERS = [f"learner-{i}" for i in range(1, 9)]
VIEWS_PER_LEARNER = 4


def main() -> None:
    rng = random.Random(42)

    print("Engagement demo seed")
    print("=" * 50)
    print(f"Target: {BASE_URL}")
    print()

    with httpx.Client(base_url=BASE_URL, timeout=10) as client:
        try:
            client.get("/ready").raise_for_status()
        except httpx.HTTPError as exc:
            print(f"API not reachable: {exc}")
            sys.exit(1)

        # Step 1: views and events
        recorded = 0
        for learner in LEARNERS:
            for course_id in rng.sample(sorted(COURSES), VIEWS_PER_LEARNER):
                body = {"user_id": learner, "course_id": course_id}
                resp = client.post(
                    "/v1/activity/views",
                    json={**body, "course_title": COURSES[course_id]},
                )
                recorded += resp.json()["recorded"]
                client.post(
                    "/v1/activity/events",
                    json={**body, "action": rng.choice(["view", "view", "complete"])},
                )
        print(f"Recorded {recorded} course views for {len(LEARNERS)} learners")

        # Step 2: periodic jobs, normally triggered by the scheduler
        updated = client.post("/v1/recommendations/popularity/refresh").json()["updated"]
        print(f"Popularity ranking refreshed for {updated} courses")

        summary = client.post("/v1/analytics/process-daily").json()
        print(f"Daily rollup processed {summary['processed']} events")
        print()

        # Step 3: results
        print("Recommendations")
        print("─" * 40)
        for learner in LEARNERS + ["newcomer"]:
            course_ids = client.get(f"/v1/users/{learner}/recommendations").json()[
                "course_ids"
            ]
            print(f"  {learner:<12} {', '.join(course_ids) or '(none)'}")


if __name__ == "__main__":
    main()
