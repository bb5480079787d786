"""Load questions from a JSON file into the question bank.

Usage: python scripts/seed_questions.py questions.json
"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, ".")
from competency.database import async_session_maker, init_db
from competency.engines.assessment.question_selector import QuestionBank, load_questions_from_json
from competency.logging_config import configure_logging


async def main(path: Path) -> None:
    configure_logging(log_level="INFO")
    await init_db()

    questions = load_questions_from_json(path)
    async with async_session_maker() as db:
        added = await QuestionBank(db).add_many(questions)
        await db.commit()

    by_step = {}
    for q in added:
        by_step[q.step] = by_step.get(q.step, 0) + 1
    print(f"Added {len(added)} question(s)")
    for step in sorted(by_step):
        print(f"  Step {step}: {by_step[step]}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(Path(sys.argv[1])))
