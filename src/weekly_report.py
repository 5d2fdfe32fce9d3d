"""
Weekly Inspection Report CLI

Config-driven weekly summary of vehicle-inspection reports posted in a chat
topic. Reads the topic live (or from a chat export), classifies every "#tag ..." message of the last
week and sends the summary to the destination chat.

Usage:
    python src/weekly_report.py --config clients/default/config.yaml
    python src/weekly_report.py --config clients/default/config.yaml --input export.json --dry-run
    python src/weekly_report.py --config clients/default/config.yaml --xlsx --output-dir /tmp
    python src/weekly_report.py --config clients/default/config.yaml --status

Scheduling is external, e.g. "0 14 * * 1 weekly-report --config ..." for
Monday 20:00 Asia/Bishkek.
"""

import sys
import os
import json
import time
import random
import argparse
import yaml
import httpx
import pandas as pd
from pathlib import Path
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from dotenv import load_dotenv
from telethon import errors as tg_errors
from telethon.sessions import StringSession
from telethon.sync import TelegramClient

from inspection_rules import (
    Message,
    aggregate,
    build_match_table,
    build_records,
    match_key,
    normalize_text,
    render_diagnostics,
    render_report,
)

if hasattr(sys.stdout, 'reconfigure'):
    sys.stdout.reconfigure(encoding='utf-8')

SERVICE_NAME = 'Telegram Inspection Reporter'
TELEGRAM_API = 'https://api.telegram.org'
TELEGRAM_MESSAGE_LIMIT = 4096
LOCK_NAME = '.weekly_report.lock'


class ConfigError(Exception):
    pass


class CollaboratorError(Exception):
    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class RunInProgress(Exception):
    pass


ALIASES = {
    'source': {'chat': 'chat_id', 'topic': 'topic_id'},
    'destination': {'output_chat': 'chat_id'},
    'report': {'window_days': 'lookback_days'},
}

DEFAULTS = {
    'source': {'kind': 'export', 'topic_id': None, 'limit': 500},
    'destination': {'sink': 'telegram'},
    'report': {'lookback_days': 7, 'timezone': 'UTC'},
    'schedule': {'weekday': 0, 'hour': 20, 'minute': 0, 'timezone': 'UTC'},
    'retry': {'attempts': 5, 'base_delay': 1.0, 'max_delay': 30.0, 'deadline': 120.0},
}

SOURCES = ('telegram', 'export')
SINKS = ('telegram', 'file')


# ── Configuration ────────────────────────────────────────────────────────


def _apply_aliases(config: dict) -> list[str]:
    warnings = []
    for section, mappings in ALIASES.items():
        if section not in config:
            continue
        for old_key, new_key in mappings.items():
            if old_key in config[section] and new_key not in config[section]:
                config[section][new_key] = config[section].pop(old_key)
                warnings.append(
                    f"DEPRECATION: '{section}.{old_key}' renamed to "
                    f"'{section}.{new_key}'. Update your config."
                )
    return warnings


def _zone(name: str, key: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ConfigError(f"Unknown time zone '{name}' (from {key})")


def load_config(
    config_path: str,
    input_override: str = None,
    output_dir_override: str = None,
    require_credentials: bool = True,
    sending: bool = True,
) -> dict:
    config_path = Path(config_path).resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    alias_warnings = _apply_aliases(config)
    for w in alias_warnings:
        print(f"  {w}", file=sys.stderr)

    base_dir = config_path.parent

    required_sections = ['client', 'source', 'destination', 'paths']
    for section in required_sections:
        if section not in config:
            raise ConfigError(f"Missing required config section: '{section}'")

    for section, defaults in DEFAULTS.items():
        config.setdefault(section, {})
        for key, value in defaults.items():
            config[section].setdefault(key, value)

    if 'name' not in config['client']:
        raise ConfigError("Missing required client param: 'client.name'")

    for section in ['source', 'destination']:
        if config[section].get('chat_id') is None:
            raise ConfigError(f"Missing required identifier: '{section}.chat_id'")

    if input_override:
        config['source']['kind'] = 'export'
    if config['source']['kind'] not in SOURCES:
        raise ConfigError(
            f"Unknown source '{config['source']['kind']}' (from source.kind), "
            f"expected one of: {', '.join(SOURCES)}"
        )
    reads_export = config['source']['kind'] == 'export'

    required_paths = ['companies', 'output_dir', 'output_prefix']
    if reads_export and not input_override:
        required_paths.insert(0, 'input')
    for key in required_paths:
        if key not in config['paths']:
            raise ConfigError(f"Missing required path: 'paths.{key}'")

    if config['destination']['sink'] not in SINKS:
        raise ConfigError(
            f"Unknown sink '{config['destination']['sink']}' (from destination.sink), "
            f"expected one of: {', '.join(SINKS)}"
        )

    lookback = config['report']['lookback_days']
    if not isinstance(lookback, (int, float)) or lookback <= 0:
        raise ConfigError(f"report.lookback_days must be a positive number, got {lookback!r}")

    limit = config['source']['limit']
    if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
        raise ConfigError(f"source.limit must be a positive integer, got {limit!r}")

    retry = config['retry']
    attempts = retry['attempts']
    if not isinstance(attempts, int) or isinstance(attempts, bool) or attempts <= 0:
        raise ConfigError(f"retry.attempts must be a positive integer, got {attempts!r}")
    for key in ['base_delay', 'max_delay', 'deadline']:
        value = retry[key]
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"retry.{key} must be a non-negative number, got {value!r}")

    config['_report_tz'] = _zone(config['report']['timezone'], 'report.timezone')
    config['_schedule_tz'] = _zone(config['schedule']['timezone'], 'schedule.timezone')

    resolved = {'input': None}
    for key in ['input', 'companies', 'output_dir']:
        if key in config['paths']:
            resolved[key] = (base_dir / config['paths'][key]).resolve()
    resolved['output_prefix'] = config['paths']['output_prefix']

    if input_override:
        resolved['input'] = Path(input_override).resolve()
    if output_dir_override:
        resolved['output_dir'] = Path(output_dir_override).resolve()

    config['_resolved_paths'] = resolved

    if not resolved['companies'].exists():
        raise ConfigError(f"File not found: {resolved['companies']} (from paths.companies)")

    credentials = {
        'telegram_bot_token': os.getenv('TELEGRAM_BOT_TOKEN'),
        'api_id': os.getenv('API_ID'),
        'api_hash': os.getenv('API_HASH'),
        'session': os.getenv('TELEGRAM_SESSION'),
    }
    if require_credentials and sending and config['destination']['sink'] == 'telegram':
        if not credentials['telegram_bot_token']:
            raise ConfigError("Missing credential: TELEGRAM_BOT_TOKEN (environment or .env)")
    if require_credentials and not reads_export:
        for key, env in [('api_id', 'API_ID'), ('api_hash', 'API_HASH'), ('session', 'TELEGRAM_SESSION')]:
            if not credentials[key]:
                raise ConfigError(f"Missing credential: {env} (environment or .env)")
        try:
            credentials['api_id'] = int(credentials['api_id'])
        except ValueError:
            raise ConfigError(f"API_ID must be an integer, got '{credentials['api_id']}'")
    config['_credentials'] = credentials

    return config


def load_directory(path: Path) -> tuple[list[str], dict[str, str]]:
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    companies = data.get('companies') or []
    if not isinstance(companies, list) or not companies:
        raise ConfigError(f"{path.name}: 'companies' must be a non-empty list")

    seen = set()
    for i, name in enumerate(companies):
        if not isinstance(name, str) or not name.strip():
            raise ConfigError(f"companies[{i}] must be a non-empty string, got {name!r}")
        if not match_key(name):
            raise ConfigError(f"companies[{i}] '{name}' has an empty match key")
        if name in seen:
            raise ConfigError(f"companies[{i}] duplicate company '{name}'")
        seen.add(name)

    aliases = data.get('aliases') or {}
    if not isinstance(aliases, dict):
        raise ConfigError(f"{path.name}: 'aliases' must be a mapping of alias -> company")
    aliases = {str(k): v for k, v in aliases.items()}
    for alias, name in aliases.items():
        if not normalize_text(alias):
            raise ConfigError(f"aliases['{alias}'] has an empty match key")
        if name not in seen:
            raise ConfigError(f"aliases['{alias}'] points to unknown company '{name}'")

    return companies, aliases


# ── Retry ────────────────────────────────────────────────────────────────


class ExponentialBackoff:
    """Delays of min(base * multiplier^attempt, max_delay), +/- jitter_range."""

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.5,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._attempt = 0

    def next_delay(self) -> float:
        delay = min(self.base_delay * (self.multiplier ** self._attempt), self.max_delay)
        jitter = delay * random.uniform(-self.jitter_range, self.jitter_range)
        self._attempt += 1
        return max(0, delay + jitter)


def call_with_retry(fn, label: str, attempts: int = 5, backoff: ExponentialBackoff = None,
                    deadline: float = 120.0, sleep=time.sleep, clock=time.monotonic):
    backoff = backoff or ExponentialBackoff()
    started = clock()
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except CollaboratorError as e:
            if not e.transient or attempt == attempts:
                raise
            delay = backoff.next_delay()
            if clock() - started + delay > deadline:
                raise CollaboratorError(
                    f"{label}: gave up after {attempt} attempts, deadline {deadline:.0f}s exceeded ({e})"
                ) from e
            print(f"  WARNING: {label} failed (attempt {attempt}/{attempts}): {e}. "
                  f"Retrying in {delay:.1f}s", file=sys.stderr)
            sleep(delay)


def _retrying(config: dict, fn, label: str):
    retry = config['retry']
    backoff = ExponentialBackoff(base_delay=retry['base_delay'], max_delay=retry['max_delay'])
    return call_with_retry(fn, label, attempts=retry['attempts'], backoff=backoff,
                           deadline=retry['deadline'])


# ── Message source ───────────────────────────────────────────────────────


def _export_text(value) -> str:
    # Telegram exports formatted messages as a list of plain strings and
    # entity dicts ({"type": "bold", "text": "..."}).
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ''.join(part if isinstance(part, str) else str(part.get('text', '')) for part in value)
    return ''


def _export_timestamp(msg: dict) -> datetime:
    if msg.get('date_unixtime'):
        return datetime.fromtimestamp(int(msg['date_unixtime']), tz=timezone.utc)
    ts = datetime.fromisoformat(msg['date'])
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _topic_messages(messages: list, topic_id) -> list:
    """Keep the messages of one forum topic, including nested reply chains.

    The export is chronological, so a reply always comes after the message it
    answers and a single pass collects the whole thread.
    """
    if topic_id is None:
        return list(messages)
    thread = {int(topic_id)}
    kept = []
    for msg in messages:
        parents = (msg.get('id'), msg.get('reply_to_message_id'), msg.get('message_thread_id'))
        if any(p in thread for p in parents if p is not None):
            thread.add(msg.get('id'))
            kept.append(msg)
    return kept


class ExportMessageSource:
    """Reads chat history from a Telegram Desktop JSON export or a CSV/XLSX table."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def fetch(self, chat_id, topic_id, limit: int) -> list[Message]:
        if not self.path.exists():
            raise CollaboratorError(f"Message export not found: {self.path}")
        try:
            if self.path.suffix.lower() == '.json':
                messages = self._read_json(chat_id, topic_id)
            else:
                messages = self._read_table(topic_id)
        except (ValueError, KeyError) as e:
            raise CollaboratorError(f"Unreadable message export {self.path}: {e}")
        except OSError as e:
            raise CollaboratorError(f"Failed to read {self.path}: {e}", transient=True)
        messages.sort(key=lambda m: m.timestamp, reverse=True)
        return messages[:limit]

    def _read_json(self, chat_id, topic_id) -> list[Message]:
        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict) or not isinstance(data.get('messages', []), list):
            raise ValueError("expected a chat export object with a 'messages' list")
        export_id = data.get('id')
        if export_id is not None and str(abs(int(export_id))) not in str(chat_id):
            print(f"  WARNING: export {self.path.name} is chat {export_id}, expected {chat_id}",
                  file=sys.stderr)
        raw = [msg for msg in data.get('messages', []) if isinstance(msg, dict)]
        return [
            Message(timestamp=_export_timestamp(msg), text=_export_text(msg.get('text')))
            for msg in _topic_messages(raw, topic_id)
            if msg.get('type', 'message') == 'message'
        ]

    def _read_table(self, topic_id) -> list[Message]:
        if self.path.suffix.lower() in ('.xlsx', '.xls'):
            df = pd.read_excel(self.path)
        else:
            df = pd.read_csv(self.path, low_memory=False)
        for col in ('date', 'text'):
            if col not in df.columns:
                raise ValueError(f"missing column '{col}'")
        if topic_id is not None and 'topic_id' in df.columns:
            df = df[pd.to_numeric(df['topic_id'], errors='coerce') == int(topic_id)]
        dates = pd.to_datetime(df['date'], utc=True, errors='coerce')
        bad_dates = dates.isna().sum()
        if bad_dates:
            print(f"  WARNING: skipped {bad_dates} rows with unparseable dates", file=sys.stderr)
        texts = df['text'].fillna('').astype(str)
        return [
            Message(timestamp=ts.to_pydatetime(), text=text)
            for ts, text in zip(dates, texts)
            if not pd.isna(ts)
        ]


class TelegramMessageSource:
    """Reads the topic live through a Telegram user session (see telegram_login.py)."""

    def __init__(self, api_id: int, api_hash: str, session: str, client_factory=None):
        self.client_factory = client_factory or (
            lambda: TelegramClient(StringSession(session), api_id, api_hash, connection_retries=5)
        )

    def fetch(self, chat_id, topic_id, limit: int) -> list[Message]:
        client = self.client_factory()
        try:
            client.connect()
            if not client.is_user_authorized():
                raise CollaboratorError("Telegram session is not authorized. Run weekly-report-login "
                                        "and update TELEGRAM_SESSION")
            kwargs = {'limit': limit}
            if topic_id is not None:
                kwargs['reply_to'] = int(topic_id)
            fetched = client.get_messages(int(chat_id), **kwargs)
        except tg_errors.FloodWaitError as e:
            raise CollaboratorError(f"Telegram flood wait of {e.seconds}s", transient=True)
        except tg_errors.RPCError as e:
            raise CollaboratorError(f"Telegram rejected get_messages: {e}")
        except OSError as e:
            raise CollaboratorError(f"Telegram unreachable: {e}", transient=True)
        finally:
            client.disconnect()
        # Service messages (topic created, pins) carry no text.
        return [Message(timestamp=m.date, text=getattr(m, 'message', None) or '') for m in fetched]


def make_source(config: dict):
    if config['source']['kind'] == 'export':
        return ExportMessageSource(config['_resolved_paths']['input'])
    creds = config['_credentials']
    return TelegramMessageSource(creds['api_id'], creds['api_hash'], creds['session'])


# ── Report sinks ─────────────────────────────────────────────────────────


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> list[str]:
    chunks = []
    current = ''
    for line in text.split('\n'):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ''
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            candidate = line
        current = candidate
    if current:
        chunks.append(current)
    return chunks


class TelegramSink:
    """Sends the report through the Telegram Bot API."""

    def __init__(self, token: str, client: httpx.Client = None):
        self.client = client or httpx.Client(base_url=f"{TELEGRAM_API}/bot{token}", timeout=30.0)

    def send(self, destination_id, text: str) -> None:
        for chunk in split_message(text):
            try:
                resp = self.client.post('/sendMessage', json={'chat_id': destination_id, 'text': chunk})
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                raise CollaboratorError(f"Telegram sendMessage returned {status}",
                                        transient=status == 429 or status >= 500)
            except httpx.TransportError as e:
                raise CollaboratorError(f"Telegram unreachable: {e}", transient=True)
            body = resp.json()
            if not body.get('ok'):
                raise CollaboratorError(f"Telegram rejected message: {body.get('description', body)}")


class FileSink:
    """Writes the report into the output directory instead of sending it."""

    def __init__(self, output_dir: Path, prefix: str):
        self.output_dir = Path(output_dir)
        self.prefix = prefix

    def send(self, destination_id, text: str) -> Path:
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        path = self.output_dir / f"{self.prefix}_{destination_id}_{stamp}.txt"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(text + '\n', encoding='utf-8')
        except OSError as e:
            raise CollaboratorError(f"Failed to write {path}: {e}", transient=True)
        return path


def make_sink(config: dict):
    paths = config['_resolved_paths']
    if config['destination']['sink'] == 'telegram':
        return TelegramSink(config['_credentials']['telegram_bot_token'])
    return FileSink(paths['output_dir'], paths['output_prefix'])


# ── Run serialisation and schedule ───────────────────────────────────────


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except (ProcessLookupError, OverflowError):
        return False
    except PermissionError:
        return True
    return True


def lock_holder(path: Path):
    """PID of the live process holding the lock file, or None if the lock is
    missing, unreadable or left behind by a process that no longer exists."""
    try:
        pid = int(Path(path).read_text(encoding='utf-8').strip())
    except (OSError, ValueError):
        return None
    if pid <= 0 or not _pid_alive(pid):
        return None
    return pid


class RunLock:
    """Exclusive lock file; at most one report run in flight per output dir.

    A lock whose recorded PID is no longer running is taken over.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def __enter__(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            holder = lock_holder(self.path)
            if holder is not None:
                raise RunInProgress(f"Another report run is in progress (pid {holder}, lock: {self.path})")
            print(f"  WARNING: removing stale lock {self.path}", file=sys.stderr)
            self.path.unlink(missing_ok=True)
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                raise RunInProgress(f"Another report run is in progress (lock: {self.path})")
        with os.fdopen(fd, 'w') as f:
            f.write(str(os.getpid()))
        return self

    def __exit__(self, exc_type, exc, tb):
        self.path.unlink(missing_ok=True)
        return False


def next_scheduled_run(now: datetime, weekday: int, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    local = now.astimezone(tz)
    candidate = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    candidate += timedelta(days=(weekday - local.weekday()) % 7)
    if candidate <= local:
        candidate += timedelta(days=7)
    return candidate


def service_status(config: dict, now: datetime) -> dict:
    sched = config['schedule']
    next_run = next_scheduled_run(now, sched['weekday'], sched['hour'], sched['minute'],
                                  config['_schedule_tz'])
    lock = config['_resolved_paths']['output_dir'] / LOCK_NAME
    return {
        'service': SERVICE_NAME,
        'status': 'running' if lock_holder(lock) is not None else 'idle',
        'timestamp': now.isoformat(),
        'nextRun': next_run.isoformat(),
    }


# ── Excel export ─────────────────────────────────────────────────────────


def export_workbook(path: Path, records, stats, tz) -> None:
    def _frame(rows):
        return pd.DataFrame([
            {
                'Date': rec.timestamp.astimezone(tz).replace(tzinfo=None),
                'Category': rec.category,
                'Company': rec.company,
                'Transfer State': rec.transfer_state.value,
                'Units': rec.unit_codes,
                'Text': rec.snippet,
            }
            for rec in rows
        ], columns=['Date', 'Category', 'Company', 'Transfer State', 'Units', 'Text'])

    summary_rows = [('Total Inspections', stats.total)]
    for title, counts in [
        ('Category', stats.by_category),
        ('Company', stats.by_company),
        ('Transfer State', stats.by_transfer_state),
    ]:
        summary_rows.append((f'--- By {title} ---', ''))
        summary_rows.extend(counts.most_common())

    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        _frame(records).to_excel(writer, sheet_name='All Inspections', index=False)
        pd.DataFrame(summary_rows, columns=['Metric', 'Value']).to_excel(
            writer, sheet_name='Summary', index=False)
        if stats.unknown_company:
            _frame(stats.unknown_company).to_excel(writer, sheet_name='Unknown Company', index=False)
        if stats.unknown_transfer:
            _frame(stats.unknown_transfer).to_excel(writer, sheet_name='Unknown Transfer', index=False)


# ── Run ──────────────────────────────────────────────────────────────────


def main(config: dict, now: datetime = None, dry_run: bool = False, export_xlsx: bool = False,
         source=None, sink=None) -> str:
    paths = config['_resolved_paths']
    src_cfg = config['source']
    dest_cfg = config['destination']
    report_tz = config['_report_tz']
    client_name = config['client']['name']

    now = now or datetime.now(timezone.utc)
    window = timedelta(days=config['report']['lookback_days'])
    week_ago = now - window
    source = source or make_source(config)
    sink = sink or (None if dry_run else make_sink(config))

    t_start = time.perf_counter()

    print("=" * 70)
    print(f"{client_name} WEEKLY INSPECTION REPORT")
    print("=" * 70)

    print("\nLoading company directory...")
    companies, aliases = load_directory(paths['companies'])
    table = build_match_table(companies, aliases)
    print(f"  Companies: {len(companies)}")
    print(f"  Aliases: {len(aliases)}")

    with RunLock(paths['output_dir'] / LOCK_NAME):
        print(f"\nFetching messages from {week_ago.isoformat()} to {now.isoformat()}")
        messages = _retrying(
            config,
            lambda: source.fetch(src_cfg['chat_id'], src_cfg['topic_id'], src_cfg['limit']),
            'fetch',
        )
        print(f"  Fetched {len(messages):,} messages")

        records = build_records(messages, table, now, window)
        stats = aggregate(records)
        print(f"  Found {stats.total:,} inspections in the last {config['report']['lookback_days']} days")

        diagnostics = render_diagnostics(stats)
        if diagnostics:
            print()
            print(diagnostics)

        report = render_report(stats, week_ago.astimezone(report_tz), now.astimezone(report_tz))
        print(f"\n{report}")

        if export_xlsx:
            paths['output_dir'].mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            output_xlsx = paths['output_dir'] / f"{paths['output_prefix']}_{stamp}.xlsx"
            export_workbook(output_xlsx, records, stats, report_tz)
            print(f"\nWorkbook saved to: {output_xlsx}")

        if dry_run:
            print("\nDry run: report not sent")
        else:
            print(f"\nSending report to chat {dest_cfg['chat_id']}...")
            _retrying(config, lambda: sink.send(dest_cfg['chat_id'], report), 'send')
            print("  Report sent")

    t_end = time.perf_counter()
    print(f"\n{'='*70}")
    print("REPORT COMPLETE")
    print(f"{'='*70}")
    print(f"Timing: total {t_end - t_start:.1f}s")
    return report


def _parse_now(value: str) -> datetime:
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        raise ConfigError(f"--now must be an ISO 8601 timestamp, got '{value}'")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def cli(argv: list[str] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Weekly Inspection Report — classify inspection chat messages and send the weekly summary'
    )
    parser.add_argument('--config', required=True, help='Path to client config YAML')
    parser.add_argument('--input', default=None, help='Override message export path (JSON, CSV or XLSX) from config')
    parser.add_argument('--output-dir', default=None, help='Override output directory from config')
    parser.add_argument('--now', default=None, help='Report end instant (ISO 8601, default: current time)')
    parser.add_argument('--dry-run', action='store_true', help='Render the report without sending it')
    parser.add_argument('--xlsx', action='store_true', help='Also write an Excel workbook of the run')
    parser.add_argument('--status', action='store_true', help='Print service status and next scheduled run')
    args = parser.parse_args(argv)

    load_dotenv()

    try:
        config = load_config(args.config, args.input, args.output_dir,
                             require_credentials=not args.status, sending=not args.dry_run)
        now = _parse_now(args.now) if args.now else None
        if args.status:
            print(json.dumps(service_status(config, now or datetime.now(timezone.utc)), indent=2))
            return 0
        main(config, now=now, dry_run=args.dry_run, export_xlsx=args.xlsx)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 1
    except RunInProgress as e:
        print(f"SKIPPED: {e}")
        return 0
    except CollaboratorError as e:
        print(f"ERROR: report run aborted: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(cli())
