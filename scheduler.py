import logging
import random
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

HEADERS = ['Day', 'Time', 'Class/Batch', 'Course Name', 'Faculty', 'Venue']

DAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']
TIME_SLOTS = ['9:00-10:00', '10:00-11:00', '11:00-12:00', '2:00-3:00', '3:00-4:00', '4:00-5:00']
SATURDAY_SLOTS = 3

DAY_ORDER = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']
TIME_ORDER = ['9:00-10:00', '10:00-11:00', '11:00-12:00', '2:00-3:00', '3:00-4:00', '4:00-5:00', '-']

MAX_THEORY_SUBJECTS = 5
MAX_LAB_SUBJECTS = 5
MAX_FACULTY = 10
MAX_VENUES = 10

DEFAULT_THEORY = ['Computer Science', 'Mathematics', 'Physics', 'Chemistry', 'English']
DEFAULT_LABS = ['Programming Lab', 'Data Structures Lab', 'Network Lab']
DEFAULT_FACULTY = ['Dr. Smith', 'Prof. Johnson', 'Dr. Williams', 'Prof. Brown', 'Dr. Davis']
DEFAULT_VENUES = ['Room-101', 'Room-102', 'Room-103', 'Lab-A', 'Lab-B']

ALL_BATCHES = 'All Batches'
MANDATORY_ENTRIES = [
    ('Tuesday', '2:00-3:00', 'LIBRARY SESSION', 'Library Staff', 'Library'),
    ('Thursday', '4:00-5:00', 'LIBRARY SESSION', 'Library Staff', 'Library'),
    ('Wednesday', '3:00-4:00', 'PROJECT WORK', 'Project Guide', 'Project Lab'),
    ('Friday', '2:00-3:00', 'PROJECT WORK', 'Project Guide', 'Project Lab'),
]
HOLIDAY_ROW = ['Sunday', '-', '-', 'HOLIDAY', '-', '-']
FREE_PERIOD = 'Free Period'


class NoDataError(Exception):
    """Raised when a dataset has no courses for the requested branch/division."""


@dataclass(frozen=True)
class Session:
    """One class meeting that still needs a day and time."""

    subject: str
    type: str  # "theory" or "lab"

    @property
    def is_lab(self) -> bool:
        return self.type == 'lab'


def _first_value(row: dict, *keys) -> str:
    for key in keys:
        value = row.get(key)
        if value not in (None, ''):
            return str(value).strip()
    return ''


def course_name(row: dict) -> str:
    return _first_value(row, 'Course name', 'Course')


def faculty_name(row: dict) -> str:
    return _first_value(row, 'Name', 'name')


def venue_name(row: dict) -> str:
    return _first_value(row, 'Room Number', 'room')


def filter_rows(rows: List[dict], branch: str, division: str) -> List[dict]:
    """
    Keep rows whose Branch/Division contain the requested tokens (case-insensitive).

    Sheets without any Branch or Division column cannot be filtered and are
    returned unchanged.
    """
    if not any(key in row for row in rows for key in ('Branch', 'branch', 'Division', 'division')):
        return list(rows)

    branch = str(branch).lower()
    division = str(division).lower()
    return [
        row for row in rows
        if branch in _first_value(row, 'Branch', 'branch').lower()
        and division in _first_value(row, 'Division', 'division').lower()
    ]


def collect_generation_data(sheets: Dict[str, List[dict]], branch: str, division: str) -> dict:
    """
    Build the filler input from a dataset workbook's sheets.
    Venues are shared between branches and are never filtered.

    Raises:
        NoDataError: If neither theory nor lab courses remain after filtering
    """
    theory = filter_rows(sheets.get('Theory Courses', []), branch, division)
    labs = filter_rows(sheets.get('Lab Courses', []), branch, division)
    faculty = filter_rows(sheets.get('Faculty', []), branch, division)
    batches = filter_rows(sheets.get('Batch Details', []), branch, division)

    logger.info(
        'Filtered data counts: theoryCourses=%d labCourses=%d faculty=%d batches=%d',
        len(theory), len(labs), len(faculty), len(batches),
    )

    if not theory and not labs:
        raise NoDataError(f'No data found for branch: {branch}, division: {division}. Please check your data.')

    return {
        'theoryCourses': theory,
        'labCourses': labs,
        'faculty': faculty,
        'batches': batches,
        'venues': sheets.get('Venue', []),
        'branch': branch,
        'division': division,
    }


def build_sessions(theory_subjects: List[str], lab_subjects: List[str]) -> List[Session]:
    """Two lectures per theory subject, one lab per lab subject."""
    sessions = []
    for subject in theory_subjects:
        sessions.append(Session(subject, 'theory'))
        sessions.append(Session(subject, 'theory'))
    for subject in lab_subjects:
        sessions.append(Session(subject, 'lab'))
    return sessions


def spread_repeats(sessions: List[Session]) -> List[Session]:
    """
    One forward sweep that breaks up back-to-back repeats of a subject.

    When two neighbours share a subject, the second is swapped with the first
    later session of a different subject. This is a single pass; a swap can
    move a repeat further down the list where it stays.
    """
    for i in range(len(sessions) - 1):
        if sessions[i].subject == sessions[i + 1].subject:
            for j in range(i + 2, len(sessions)):
                if sessions[j].subject != sessions[i].subject:
                    sessions[i + 1], sessions[j] = sessions[j], sessions[i + 1]
                    break
    return sessions


def sort_rows(rows: List[list]) -> List[list]:
    return sorted(rows, key=lambda row: (DAY_ORDER.index(row[0]), TIME_ORDER.index(row[1])))


def build_grid(rows: List[list]) -> Dict[str, Dict[str, Optional[list]]]:
    """Arrange timetable rows as {day: {time: row}}; unfilled cells are None."""
    grid = {}
    for day in DAYS:
        grid[day] = {time_slot: None for time_slot in TIME_SLOTS}
    for row in rows:
        if len(row) < len(HEADERS) or row[0] not in grid:
            continue
        if row[1] in grid[row[0]]:
            grid[row[0]][row[1]] = row
    return grid


class TimetableGenerator:
    """
    Fixed-pattern weekly timetable filler.

    Subjects are expanded into sessions, shuffled with a seeded RNG, laid
    into a Monday-Saturday grid, then the library/project slots and the
    Sunday holiday are stamped on top.
    """

    def __init__(self, random_seed: int | None = None):
        self.seed = random_seed if random_seed is not None else int(time.time() * 1000)
        self.random = random.Random(self.seed)

    # --------------------------------------------------------------------- #
    # Public API
    # --------------------------------------------------------------------- #
    def generate(self, data: dict) -> dict:
        theory = self._names(data.get('theoryCourses'), course_name, MAX_THEORY_SUBJECTS) or DEFAULT_THEORY
        labs = self._names(data.get('labCourses'), course_name, MAX_LAB_SUBJECTS) or DEFAULT_LABS
        faculty = self._names(data.get('faculty'), faculty_name, MAX_FACULTY) or DEFAULT_FACULTY
        venues = self._names(data.get('venues'), venue_name, MAX_VENUES) or DEFAULT_VENUES

        logger.info(
            'Using data: theory=%d lab=%d faculty=%d venues=%d seed=%s',
            len(theory), len(labs), len(faculty), len(venues), self.seed,
        )

        sessions = build_sessions(theory, labs)
        self.random.shuffle(sessions)
        spread_repeats(sessions)

        batch = f"{data.get('branch')} Div{data.get('division')}"
        rows = self._fill_grid(sessions, batch, faculty, venues)
        self._apply_mandatory(rows)
        rows.append(list(HOLIDAY_ROW))
        rows = sort_rows(rows)

        logger.info('Generated %d timetable entries', len(rows))
        return {'headers': list(HEADERS), 'rows': rows}

    # --------------------------------------------------------------------- #
    # Helpers
    # --------------------------------------------------------------------- #
    @staticmethod
    def _names(rows, extract, limit):
        names = [extract(row) for row in (rows or [])[:limit]]
        return [name for name in names if name]

    def _fill_grid(self, sessions, batch, faculty, venues):
        lab_venues = [v for v in venues if 'lab' in v.lower()]
        room_venues = [v for v in venues if 'room' in v.lower() or 'lab' not in v.lower()]

        rows = []
        index = 0
        for day in DAYS:
            slots_for_day = SATURDAY_SLOTS if day == 'Saturday' else len(TIME_SLOTS)
            for time_slot in TIME_SLOTS[:slots_for_day]:
                if index >= len(sessions):
                    return rows
                session = sessions[index]
                if session.is_lab:
                    venue = lab_venues[index % len(lab_venues)] if lab_venues else 'Lab-1'
                else:
                    venue = room_venues[index % len(room_venues)] if room_venues else 'Room-101'
                rows.append([day, time_slot, batch, session.subject, faculty[index % len(faculty)], venue])
                index += 1
        if index < len(sessions):
            logger.warning('Dropped %d sessions that did not fit the weekly grid', len(sessions) - index)
        return rows

    @staticmethod
    def _apply_mandatory(rows):
        for day, time_slot, course, staff, venue in MANDATORY_ENTRIES:
            entry = [day, time_slot, ALL_BATCHES, course, staff, venue]
            for i, row in enumerate(rows):
                if row[0] == day and row[1] == time_slot:
                    rows[i] = entry
                    break
            else:
                rows.append(entry)
