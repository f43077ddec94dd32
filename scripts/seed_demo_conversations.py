"""
Seed script to populate the database with demo users, conversations and messages.
Run with: python scripts/seed_demo_conversations.py
"""

import asyncio
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

# Add parent directory to path so we can import courtchat
sys.path.insert(0, str(Path(__file__).parent.parent))

from faker import Faker
from sqlalchemy import func, select

from courtchat.core.ids import time_ordered_uuid
from courtchat.core.security import create_access_token
from courtchat.database import async_session_maker
from courtchat.models.conversation import Conversation
from courtchat.models.message import Message
from courtchat.models.user import User
from courtchat.schemas.message import MessageType
from courtchat.services.conversation_service import canonical_pair

fake = Faker()

# Configuration
NUM_USERS = 20
NUM_CONVERSATIONS = 30
MAX_MESSAGES_PER_CONVERSATION = 40

OPENERS = [
    "Up for a game on Saturday?",
    "I booked court 3 for 18:00, want to join?",
    "Great match yesterday!",
    "Are you still looking for a doubles partner?",
]


async def seed_users(db) -> list[User]:
    users = []
    print(f"Creating {NUM_USERS} demo users...")

    for i in range(NUM_USERS):
        user = User(
            id=uuid4(),
            name=fake.name(),
            email=f"player{i+1}@demo.courtchat.app",
            city=fake.city(),
            bio=fake.sentence(nb_words=10),
        )
        db.add(user)
        users.append(user)

    await db.flush()
    return users


async def seed_conversations(db, users: list[User]) -> tuple[list[Conversation], int]:
    conversations = []
    message_count = 0
    pairs = set()
    print(f"Creating up to {NUM_CONVERSATIONS} conversations...")

    while len(pairs) < NUM_CONVERSATIONS:
        a, b = random.sample(users, 2)
        pairs.add(canonical_pair(a.id, b.id))

    for low, high in pairs:
        conversation = Conversation(id=uuid4(), participant_low=low, participant_high=high)
        db.add(conversation)
        await db.flush()

        # Walk forward in time so ids and timestamps agree
        sent_at = datetime.now(timezone.utc) - timedelta(days=random.randint(1, 30))
        last = None
        for j in range(random.randint(0, MAX_MESSAGES_PER_CONVERSATION)):
            sent_at += timedelta(minutes=random.randint(1, 240))
            message = Message(
                id=time_ordered_uuid(),
                conversation_id=conversation.id,
                sender_id=random.choice((low, high)),
                content=random.choice(OPENERS) if j == 0 else fake.sentence(nb_words=random.randint(3, 15)),
                message_type=MessageType.TEXT,
                is_read=True,
                read_at=sent_at,
                created_at=sent_at,
            )
            db.add(message)
            last = message
            message_count += 1

        if last is not None:
            # Leave the tail unread for the receiver
            last.is_read = False
            last.read_at = None
            conversation.last_message_id = last.id
            conversation.last_message_at = last.created_at
        conversations.append(conversation)

    await db.flush()
    return conversations, message_count


async def main():
    print("=" * 50)
    print("Seeding demo conversations for Courtchat")
    print("=" * 50)

    async with async_session_maker() as db:
        try:
            count_result = await db.execute(
                select(func.count(User.id)).where(User.email.like("%@demo.courtchat.app"))
            )
            existing_count = count_result.scalar() or 0

            if existing_count > 0:
                print(f"\nFound {existing_count} existing demo users.")
                response = input("Do you want to add more demo data? (y/n): ")
                if response.lower() != 'y':
                    print("Aborted.")
                    return

            users = await seed_users(db)
            conversations, message_count = await seed_conversations(db, users)
            await db.commit()

            print("\n" + "=" * 50)
            print("Summary:")
            print("=" * 50)
            print(f"  Users created: {len(users)}")
            print(f"  Conversations created: {len(conversations)}")
            print(f"  Messages created: {message_count}")
            print("\nDemo login token for the first user:")
            print(f"  {users[0].email}")
            print(f"  {create_access_token(users[0].id)}")
            print("=" * 50)

        except Exception as e:
            print(f"\nError: {e}")
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(main())
