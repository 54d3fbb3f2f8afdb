#!/usr/bin/env python3
"""
Outlook MSG Exporter

A Python script for exporting emails from Microsoft Outlook to individual .msg
files, organized into one folder per received date. This tool is particularly
useful for email archiving, handing over mail to other systems, or creating
file-level backups of selected messages.

Features:
- Exports the current Outlook selection, or every mail item of a picked folder
- Saves each message as a standalone .msg file (ANSI or Unicode)
- Groups messages into YYYY-MM-DD folders by received date
- Filename-safe subjects with " (1)", " (2)" suffixes instead of overwrites
- Date-based filtering for selective exports
- One failing message never aborts the rest of the export

Usage:
    python outlook_exporter.py [path-to-archive]

    Examples:
    python outlook_exporter.py C:\\Archive\\Mail
    python outlook_exporter.py C:\\Archive\\Mail --older-than 2023-01-01 --unicode
    python outlook_exporter.py            (prompts for the archive directory)

License: MIT
Version: 1.0.0
"""

import os
import sys
import argparse
from pathlib import Path
from datetime import date, datetime, timezone
from dateutil.parser import parse as date_parse

OL_MAIL = 43            # olMail, Outlook item class of a mail message
OL_MSG = 3              # olMSG
OL_MSG_UNICODE = 9      # olMSGUnicode
MSG_EXTENSION = ".msg"
NO_DATE_YEAR = 4501     # Outlook returns 4501-01-01 for "no date"

WINDOWS_ILLEGAL_CHARS = frozenset('\\/:*?"<>|') | frozenset(chr(c) for c in range(32))
POSIX_ILLEGAL_CHARS = frozenset('/\0')


class FolderPickerError(RuntimeError):
    """Raised when the mail application's folder picker itself fails."""


def illegal_filename_chars(platform=None):
    """
    Return the set of characters that may not appear in a filename.

    Args:
        platform (str): A sys.platform style name, defaults to the host platform

    Returns:
        frozenset: Characters to be replaced when building filenames
    """
    platform = platform or sys.platform
    if platform.startswith("win"):
        return WINDOWS_ILLEGAL_CHARS
    return POSIX_ILLEGAL_CHARS


def safe_filename(s, platform=None):
    """
    Convert a string to a safe filename by replacing invalid characters.

    Every character that is illegal in a filename on the given platform is
    replaced with an underscore. All other characters keep their order.

    Args:
        s (str): The input string to sanitize
        platform (str): A sys.platform style name, defaults to the host platform

    Returns:
        str: A filename-safe string of the same length as the input
    """
    illegal = illegal_filename_chars(platform)
    return "".join("_" if c in illegal else c for c in s)


def placeholder_subject(sequence, now=None):
    """
    Build a stand-in subject for a message without one.

    Args:
        sequence (int): Position of the item within the current run
        now (datetime): Timestamp to embed, defaults to the current time

    Returns:
        str: Placeholder such as "No Subject 20240301_101500-3"
    """
    now = now or datetime.now()
    return f"No Subject {now:%Y%m%d_%H%M%S}-{sequence}"


def describe_subject(item):
    """Original subject of an item for log lines, or "(no subject)"."""
    try:
        subject = item.subject
    except Exception:
        subject = ""
    if subject and subject.strip():
        return subject
    return "(no subject)"


def coerce_received_time(value):
    """
    Turn a received timestamp from the mail application into a datetime.

    Outlook hands out pywintypes datetimes (a datetime subclass), but items
    from other sources may carry strings or nothing at all.

    Args:
        value: Received timestamp as reported by the mail source

    Returns:
        datetime: The timestamp, or None if it is absent or not a valid date
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        received = value
    elif isinstance(value, date):
        received = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            received = date_parse(value)
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if received.year >= NO_DATE_YEAR:
        return None

    return received


def date_bucket(received, now=None):
    """
    Name of the date folder an item belongs to.

    Args:
        received: Received timestamp as reported by the mail source
        now (datetime): Fallback used when the timestamp is absent or invalid

    Returns:
        str: Folder name in YYYY-MM-DD format
    """
    received = coerce_received_time(received)
    if received is None:
        received = now or datetime.now()
    return received.strftime("%Y-%m-%d")


def unique_path(folder, stem, extension=MSG_EXTENSION):
    """
    Find a path in folder that does not exist yet.

    Tries "<stem><extension>" first, then "<stem> (1)<extension>",
    "<stem> (2)<extension>" and so on.

    Args:
        folder (Path): Directory the file will be written to
        stem (str): Sanitized base name without extension
        extension (str): File extension including the dot

    Returns:
        Path: An unused path inside folder
    """
    folder = Path(folder)
    candidate = folder / f"{stem}{extension}"
    counter = 1
    while candidate.exists():
        candidate = folder / f"{stem} ({counter}){extension}"
        counter += 1
    return candidate


def should_export_item(received, older_than_date):
    """
    Check if an item should be exported based on date filter.

    Args:
        received: Received timestamp as reported by the mail source
        older_than_date (datetime): Cutoff date for filtering

    Returns:
        bool: True if the item should be exported, False otherwise
    """
    if not older_than_date:
        return True

    received = coerce_received_time(received)
    if received is None:
        # Items without a usable date are always exported
        return True

    # Ensure both dates are timezone-aware for proper comparison
    if received.tzinfo is None:
        received = received.replace(tzinfo=timezone.utc)

    if older_than_date.tzinfo is None:
        older_than_date = older_than_date.replace(tzinfo=timezone.utc)

    return received < older_than_date


def parse_date_string(date_string):
    """
    Parse various date formats into a datetime object.

    Args:
        date_string (str): Date string in various formats

    Returns:
        datetime: Parsed datetime object

    Raises:
        ValueError: If the date string cannot be parsed
    """
    try:
        return date_parse(date_string)
    except (ValueError, OverflowError):
        formats = [
            "%Y-%m-%d",
            "%Y-%m-%d %H:%M:%S",
            "%Y/%m/%d",
            "%d.%m.%Y",
            "%d/%m/%Y",
            "%m/%d/%Y"
        ]

        for fmt in formats:
            try:
                return datetime.strptime(date_string, fmt)
            except ValueError:
                continue

        raise ValueError(f"Unable to parse date: {date_string}")


class MessageItem:
    """
    A single item handed out by a MailSource.

    Subclasses expose the subject, the received timestamp, whether the item
    is a mail message at all, and a way to persist it as a .msg file.
    """

    subject = ""
    received_time = None
    is_mail = True

    def save(self, path, save_format=OL_MSG):
        raise NotImplementedError


class MailSource:
    """
    Where the messages to export come from.

    The export driver only talks to this interface, so the filename and
    date logic works the same against Outlook or an in-memory source.
    Use it as a context manager to guarantee close() on every exit path.
    """

    def selected_items(self):
        """Items currently selected in the mail application, possibly empty."""
        raise NotImplementedError

    def pick_folder_items(self):
        """Let the user pick a folder; its mail items, or None if cancelled."""
        raise NotImplementedError

    def save_item(self, item, path, save_format=OL_MSG):
        item.save(path, save_format)

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class OutlookMessage(MessageItem):
    """MessageItem backed by an Outlook COM item."""

    def __init__(self, com_item):
        self.com_item = com_item

    @property
    def subject(self):
        return self.com_item.Subject or ""

    @property
    def received_time(self):
        # Meeting requests, reports and the like may not carry one
        return getattr(self.com_item, "ReceivedTime", None)

    @property
    def is_mail(self):
        return getattr(self.com_item, "Class", None) == OL_MAIL

    def save(self, path, save_format=OL_MSG):
        self.com_item.SaveAs(str(path), save_format)


def iter_com_collection(collection):
    """Yield the members of a 1-based COM collection."""
    for index in range(1, collection.Count + 1):
        yield collection.Item(index)


class OutlookSource(MailSource):
    """
    MailSource talking to Outlook through its COM object model.

    Use OutlookSource.connect() to attach to Outlook; the constructor takes
    an already dispatched Outlook.Application object.
    """

    def __init__(self, application, namespace=None, com_initialized=False):
        self.application = application
        if namespace is None:
            namespace = application.GetNamespace("MAPI")
        self.namespace = namespace
        self._com_initialized = com_initialized

    @classmethod
    def connect(cls, prog_id="Outlook.Application"):
        """
        Attach to a running Outlook instance, or launch a new one.

        Args:
            prog_id (str): COM ProgID of the mail application

        Returns:
            OutlookSource: A connected source, to be closed by the caller

        Raises:
            ConnectionError: If Outlook can neither be attached to nor launched
        """
        try:
            import pythoncom
            from pywintypes import com_error
            from win32com.client import Dispatch, GetActiveObject
        except ImportError as e:
            raise ConnectionError(f"pywin32 is required to talk to Outlook ({e})") from e

        pythoncom.CoInitialize()
        try:
            try:
                application = GetActiveObject(prog_id)
                print("🔗 Attached to running Outlook instance")
            except com_error:
                application = Dispatch(prog_id)
                print("🚀 Started new Outlook instance")
            return cls(application, com_initialized=True)
        except Exception as e:
            pythoncom.CoUninitialize()
            raise ConnectionError(f"Could not connect to Outlook: {e}") from e

    def selected_items(self):
        explorer = self.application.ActiveExplorer()
        if explorer is None:
            return []
        try:
            # Views such as Outlook Today have no selection at all
            selection = explorer.Selection
        except Exception as e:
            print(f"📋 No selection available in the current view ({e})")
            return []
        return [OutlookMessage(item) for item in iter_com_collection(selection)]

    def pick_folder_items(self):
        try:
            folder = self.namespace.PickFolder()
        except Exception as e:
            raise FolderPickerError(f"Folder picker failed: {e}") from e

        if folder is None:
            return None

        print(f"📂 Selected folder: {getattr(folder, 'FolderPath', folder.Name)}")

        return [
            OutlookMessage(item)
            for item in iter_com_collection(folder.Items)
            if getattr(item, "Class", None) == OL_MAIL
        ]

    def close(self):
        self.namespace = None
        self.application = None
        if self._com_initialized:
            import pythoncom
            pythoncom.CoUninitialize()
            self._com_initialized = False


def pick_output_directory(title="Select export directory"):
    """
    Ask the user for the export directory with a native dialog.

    Returns:
        str: The chosen directory, or None if the dialog was cancelled
    """
    import tkinter as tk
    from tkinter import filedialog

    root = tk.Tk()
    root.withdraw()
    try:
        root.attributes("-topmost", True)
        path = filedialog.askdirectory(title=title, mustexist=False, parent=root)
    finally:
        root.destroy()

    return path or None


def export_item(source, item, output_root, sequence, save_format=OL_MSG,
                older_than_date=None, now=None):
    """
    Save a single message below output_root.

    The message lands in output_root/YYYY-MM-DD/<subject>.msg, where the date
    is the received date (today if the item has none) and the subject is
    made filename-safe. Existing files are never overwritten.

    Args:
        source (MailSource): Source the item came from
        item (MessageItem): The message to save
        output_root (Path): Base output directory
        sequence (int): Position of the item within the current run
        save_format (int): OL_MSG or OL_MSG_UNICODE
        older_than_date (datetime): Date filter (optional)
        now (datetime): Current time, used for placeholders and fallback dates

    Returns:
        Path: Where the message was saved, or None if skipped by the date filter
    """
    now = now or datetime.now()
    received = item.received_time

    if not should_export_item(received, older_than_date):
        return None

    subject = item.subject
    if not subject or not subject.strip():
        subject = placeholder_subject(sequence, now)

    stem = safe_filename(subject)

    bucket_dir = Path(output_root) / date_bucket(received, now)
    bucket_dir.mkdir(parents=True, exist_ok=True)

    path = unique_path(bucket_dir, stem)
    source.save_item(item, path, save_format)
    return path


def export_items(source, output_root=None, pick_directory=pick_output_directory,
                 save_format=OL_MSG, older_than_date=None, clock=datetime.now):
    """
    Export the selected (or picked) messages of a mail source.

    Args:
        source (MailSource): Where the messages come from
        output_root (str): Export directory, prompted for if None
        pick_directory (callable): Directory dialog returning a path or None
        save_format (int): OL_MSG or OL_MSG_UNICODE
        older_than_date (datetime): Date filter (optional)
        clock (callable): Returns the current time

    Returns:
        tuple: (saved_count, skipped_count, failed_count)

    Raises:
        FolderPickerError: If the folder picker itself fails
    """
    items = source.selected_items()
    if items:
        print(f"📋 Using {len(items)} selected item(s)")
    else:
        print("📋 Nothing selected, choose a folder to export")
        items = source.pick_folder_items()
        if items is None:
            print("⏹️ Folder selection cancelled, nothing exported")
            return 0, 0, 0

    # Nothing to export: stop before prompting for or creating the output root
    if not items:
        print("📭 No items available to export")
        return 0, 0, 0

    if output_root is None:
        output_root = pick_directory()
        if not output_root:
            print("⏹️ Directory selection cancelled, nothing exported")
            return 0, 0, 0

    output_root = Path(output_root).expanduser()
    output_root.mkdir(parents=True, exist_ok=True)
    print(f"📤 Writing archive to: {os.path.abspath(output_root)}\n")

    saved_count = 0
    skipped_count = 0
    failed_count = 0

    for sequence, item in enumerate(items, 1):
        try:
            if not item.is_mail:
                skipped_count += 1
                print(f"⏭️ Skipped (not a mail item): {describe_subject(item)}")
                continue

            path = export_item(source, item, output_root, sequence, save_format,
                               older_than_date, clock())
        except Exception as e:
            failed_count += 1
            print(f"⚠️ Failed: {describe_subject(item)} ({e})")
            continue

        if path is None:
            skipped_count += 1
            print(f"⏭️ Skipped (date filter): {describe_subject(item)}")
        else:
            saved_count += 1
            print(f"✔️ Saved: {path}")

    return saved_count, skipped_count, failed_count


def build_parser():
    parser = argparse.ArgumentParser(
        description="Export Outlook emails to .msg files grouped by received date",
        epilog="""
Examples:
  Export the current selection (or a picked folder):
    %(prog)s C:\\Archive\\Mail

  Export with date filter:
    %(prog)s C:\\Archive\\Mail --older-than 2023-01-01

  Prompt for the archive directory:
    %(prog)s
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument("output",
                        nargs="?",
                        help="Path to the output archive directory (prompted for if omitted)")
    parser.add_argument("--older-than",
                        help="Only export emails older than this date (format: YYYY-MM-DD or YYYY-MM-DD HH:MM:SS)",
                        type=str)
    parser.add_argument("--unicode",
                        action="store_true",
                        help="Save as Unicode .msg files instead of the ANSI format")
    return parser


def main(argv=None):
    """
    Main entry point for the Outlook export script.

    Handles command-line argument parsing, connects to Outlook and runs the
    export, making sure Outlook is released whatever happens.

    Returns:
        int: Process exit status
    """
    args = build_parser().parse_args(argv)

    older_than_date = None
    if args.older_than:
        try:
            older_than_date = parse_date_string(args.older_than)
            print(f"📅 Date filter: Only exporting emails older than {older_than_date}")
        except ValueError as e:
            print(f"❌ Error parsing date: {e}")
            return 1

    save_format = OL_MSG_UNICODE if args.unicode else OL_MSG

    try:
        source = OutlookSource.connect()
    except ConnectionError as e:
        print(f"❌ {e}")
        return 1

    with source:
        try:
            saved, skipped, failed = export_items(
                source,
                args.output,
                save_format=save_format,
                older_than_date=older_than_date,
            )
        except FolderPickerError as e:
            print(f"❌ {e}")
            return 1

    if saved or skipped or failed:
        print(f"\n🎉 Export complete!")
    print(f"📊 Total: {saved} emails saved, {skipped} skipped, {failed} failed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
