"""
Conversation Migration Script for Parley Chat API.

Copies conversations from the local JSON file store into Supabase.
A conversation is skipped when Supabase already holds one with the same
session id and creation time, so the script can be re-run safely.

Usage:
    python migrate_conversations.py [--file PATH] [--dry-run]
"""
import argparse
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from config import CONVERSATIONS_FILE, SUPABASE_URL, SUPABASE_KEY
from models.conversation import Conversation
from storage.base import ConversationStore
from storage.document_store import DocumentStore
from storage.file_store import FileStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    migrated: int = 0
    skipped: int = 0
    failed: int = 0


def _already_migrated(target: ConversationStore, conversation: Conversation) -> bool:
    existing = target.list(session_id=conversation.session_id, limit=max(target.count(conversation.session_id), 1))
    return any(other.created_at == conversation.created_at for other in existing)


def migrate(source: ConversationStore, target: ConversationStore, dry_run: bool = False) -> MigrationReport:
    """
    Copy every conversation from `source` into `target`.

    Args:
        source: Store to read from (normally the file store)
        target: Store to write to (normally Supabase)
        dry_run: Only report what would be migrated

    Returns:
        MigrationReport with migrated / skipped / failed counts
    """
    report = MigrationReport()
    total = source.count()
    conversations: List[Conversation] = source.list(limit=max(total, 1)) if total else []
    logger.info(f"Found {len(conversations)} conversations in source store")

    # Oldest first so the target sees them in creation order
    for conversation in reversed(conversations):
        title = conversation.title[:50]
        try:
            if _already_migrated(target, conversation):
                report.skipped += 1
                logger.info(f"Skipped existing conversation: {title}")
                continue
            if not dry_run:
                target.import_conversation(conversation)
            report.migrated += 1
            logger.info(f"{'Would migrate' if dry_run else 'Migrated'} conversation: {title}")
        except Exception as e:
            report.failed += 1
            logger.error(f"Failed to migrate conversation {conversation.id}: {e}", exc_info=True)

    return report


def main(argv: Optional[List[str]] = None) -> int:
    """Main migration process."""
    parser = argparse.ArgumentParser(description="Migrate file-stored conversations to Supabase")
    parser.add_argument("--file", type=Path, default=CONVERSATIONS_FILE, help="Path to conversations.json")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing to Supabase")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.file.exists():
        logger.info(f"No file storage data found at {args.file}")
        return 0

    try:
        source = FileStore(args.file)
        target = DocumentStore(supabase_url=SUPABASE_URL, supabase_key=SUPABASE_KEY)
        report = migrate(source, target, dry_run=args.dry_run)
    except KeyboardInterrupt:
        logger.warning("Migration interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Migration failed: {str(e)}", exc_info=True)
        return 1

    logger.info("=" * 60)
    logger.info(f"Migrated: {report.migrated}  Skipped: {report.skipped}  Failed: {report.failed}")
    logger.info("=" * 60)
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
