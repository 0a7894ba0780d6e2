#!/usr/bin/env python3
"""
Script to register a book and its physical copies with Kitabu.

Each copy gets a tracking code of the form BOOKCODE/NNN/YY, e.g.
`./scripts/addbook.py --title "Blossoms of the Savannah" --code BOS --copies 3`
creates BOS/001/25, BOS/002/25 and BOS/003/25.
"""
import argparse
import datetime
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from kitabu.core import db as database
from kitabu.core.db import transaction
from kitabu.core.exceptions import KitabuError
from kitabu.core.models import Book, Condition
from kitabu.core.registry import CopyRegistry


def main():
    parser = argparse.ArgumentParser(
        description="Register a book and its copies with Kitabu"
    )
    parser.add_argument(
        "--title",
        type=str,
        required=True,
        help="Book title"
    )
    parser.add_argument(
        "--author",
        type=str,
        default=None,
        help="Book author"
    )
    parser.add_argument(
        "--code",
        type=str,
        required=True,
        help="Book code used as the tracking code prefix (2-4 letters/digits)"
    )
    parser.add_argument(
        "--copies",
        type=int,
        default=1,
        help="Number of copies to register"
    )
    parser.add_argument(
        "--year",
        type=int,
        default=datetime.date.today().year,
        help="Acquisition year encoded in the tracking code"
    )
    parser.add_argument(
        "--condition",
        choices=[c.value for c in Condition],
        default=Condition.GOOD.value,
        help="Condition of the new copies"
    )

    args = parser.parse_args()
    if args.copies < 1:
        print("Error: --copies must be at least 1")
        sys.exit(1)

    database.init()
    db = database.session
    registry = CopyRegistry(db)
    code = args.code.strip().upper()

    try:
        with transaction(db):
            book = db.query(Book).filter(Book.book_code == code).first()
            if book is None:
                book = Book(title=args.title, author=args.author, book_code=code)
                db.add(book)
                db.flush()
            start = max((c.copy_number for c in book.copies), default=0) + 1
            copies = [
                registry.add_copy(book, number, args.year, Condition(args.condition))
                for number in range(start, start + args.copies)
            ]
            codes = [c.tracking_code for c in copies]
    except KitabuError as e:
        print(f"✗ Registration failed: {e}")
        sys.exit(1)

    print(f"✓ Registered {len(codes)} copies of '{args.title}':")
    for tracking_code in codes:
        print(f"  {tracking_code}")


if __name__ == "__main__":
    main()
