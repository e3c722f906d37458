from flask import Flask, render_template, request, jsonify, send_file, g, make_response, abort
from werkzeug.exceptions import RequestEntityTooLarge
from pyinstrument import Profiler
from datetime import datetime, timezone
import logging
import time
import csv
import io
import os
import re

from cache import init_cache, cache_response, invalidate_cache
from file_store import store, NotFoundError, is_timetable_name
from scheduler import TimetableGenerator, NoDataError, collect_generation_data, build_grid, DAYS, TIME_SLOTS, FREE_PERIOD
from spreadsheet_processor import (
    ValidationError,
    allowed_file,
    get_extension,
    parse_file,
    read_workbook_sheets,
    validate_upload,
    build_dataset_template,
)
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO'),
    format='[%(levelname)s] %(asctime)s %(name)s | %(message)s',
)

MAX_FILE_SIZE = 10 * 1024 * 1024
FILE_TOO_LARGE = 'File size too large. Maximum size is 10MB.'
EXTENSION_NOT_ALLOWED = 'Only Excel files (.xlsx, .xls) and CSV files are allowed!'

DATASET_FILE_PATTERN = re.compile(r'^([A-Za-z]+)(\d+)_Dataset\.(xlsx|xls)$')
DISCOVERY_SHEETS = ['Theory Courses', 'Lab Courses', 'Faculty', 'Batch Details']

DEFAULT_CONSTRAINTS = {
    'theoryDuration': 60,
    'labDuration': 120,
    'shortBreaks': 2,
    'longBreaks': 1,
}

# Cache prefixes touched by anything that changes the uploads folder
LISTING_CACHES = ('branches_divisions', 'timetables')

DASHBOARD_ROLES = {
    'admin': 'Admin Dashboard',
    'faculty': 'Faculty Dashboard',
    'student': 'Student Dashboard',
    'generator': 'Timetable Generator',
}

# Static content for the faculty/student dashboards; never read from or written to storage
SAMPLE_SCHEDULES = {
    'faculty': [
        ['Monday', '9:00-10:00', 'DS Div1', 'Data Structures', 'Room-101'],
        ['Tuesday', '11:00-12:00', 'IT Div2', 'Operating Systems', 'Room-102'],
        ['Thursday', '2:00-3:00', 'DS Div1', 'Programming Lab', 'Lab-A'],
    ],
    'student': [
        ['Monday', '9:00-10:00', 'Data Structures', 'Dr. Smith', 'Room-101'],
        ['Monday', '10:00-11:00', 'Mathematics', 'Prof. Johnson', 'Room-102'],
        ['Wednesday', '2:00-3:00', 'Programming Lab', 'Dr. Williams', 'Lab-A'],
    ],
}
SAMPLE_MESSAGES = [
    {'sender': 'Admin Office', 'subject': 'Timetable published', 'body': 'The new weekly timetable is now available.'},
    {'sender': 'Library', 'subject': 'Library sessions', 'body': 'Library sessions run on Tuesday and Thursday afternoons.'},
]


def utc_now_iso(now=None):
    """ISO-8601 timestamp with millisecond precision and a trailing Z."""
    now = now or datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_generated_at(value):
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def snapshot_name(branch, division, millis):
    """Timestamped snapshot name; bumps the millisecond stamp until the name is free."""
    name = f'timetable_{branch}_{division}_{millis}.json'
    while store.exists(name):
        millis += 1
        name = f'timetable_{branch}_{division}_{millis}.json'
    return name


def find_source_file(branch, division):
    """
    Pick the dataset for a branch/division: the first spreadsheet whose name
    mentions both, otherwise the first spreadsheet available.
    """
    spreadsheets = store.spreadsheets()
    branch_token = branch.lower()
    division_token = division.lower()
    for name in spreadsheets:
        lowered = name.lower()
        if branch_token in lowered and division_token in lowered:
            return name, True
    if not spreadsheets:
        raise FileNotFoundError('No Excel files found in uploads folder. Please upload data first.')
    return spreadsheets[0], False


def discover_branches_divisions(excel_files):
    """Branch/division tokens from dataset filenames, else from the first workbook's rows."""
    branches, divisions = set(), set()

    for name in excel_files:
        match = DATASET_FILE_PATTERN.match(name)
        if match:
            branches.add(match.group(1))
            divisions.add(match.group(2))
            app.logger.debug(f"Extracted from filename {name}: Branch={match.group(1)}, Division={match.group(2)}")

    if not branches or not divisions:
        sheets = read_workbook_sheets(store.open(excel_files[0]), names=DISCOVERY_SHEETS)
        for sheet_name in DISCOVERY_SHEETS:
            for row in sheets.get(sheet_name, []):
                branch = row.get('Branch') or row.get('branch') or row.get('BRANCH')
                division = row.get('Division') or row.get('division') or row.get('DIVISION') or row.get('Div')
                if branch:
                    branches.add(str(branch))
                if division:
                    divisions.add(str(division))

    return sorted(branches), sorted(divisions)


app = Flask(__name__)
# Load configuration from environment variables
app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'fallback-secret-key')
app.config['UPLOAD_FOLDER'] = os.getenv('UPLOAD_FOLDER', os.path.join(app.root_path, 'uploads'))
app.config['MAX_FILE_SIZE'] = int(os.getenv('MAX_FILE_SIZE', MAX_FILE_SIZE))
# Leave room for multipart framing around a file of exactly MAX_FILE_SIZE
app.config['MAX_CONTENT_LENGTH'] = app.config['MAX_FILE_SIZE'] + 1024 * 1024
app.config['REDIS_URL'] = os.getenv('REDIS_URL', 'redis://localhost:6379/1')
app.config['CACHE_ENABLED'] = os.getenv('CACHE_ENABLED', 'true').lower() in ('1', 'true', 'yes')
app.config['CACHE_TTL'] = int(os.getenv('CACHE_TTL', 300))

store.init_app(app)
init_cache(app)

CACHE_TTL = app.config['CACHE_TTL']


# Profiling Middleware
@app.before_request
def before_request():
    request._start_time = time.time()

    if 'profile' in request.args:
        g.profiler = Profiler()
        g.profiler.start()


@app.after_request
def after_request(response):
    if hasattr(request, '_start_time'):
        elapsed = time.time() - request._start_time
        app.logger.info(f"[{request.remote_addr}] {request.method} {request.path} {elapsed:.3f}s")
        response.headers["X-Response-Time"] = f"{elapsed:.3f}s"

    if hasattr(g, 'profiler'):
        g.profiler.stop()
        return make_response(g.profiler.output_html())

    return response


@app.errorhandler(RequestEntityTooLarge)
def file_too_large(error):
    return jsonify({'success': False, 'error': FILE_TOO_LARGE}), 400


# Health Check Endpoint (for load balancers, Docker, monitoring)
@app.route('/health')
def health_check():
    """
    Health check endpoint for monitoring and load balancers.
    Returns 200 OK if the uploads store can be listed.
    """
    try:
        store.list()
        return jsonify({
            'status': 'healthy',
            'service': 'Campus Timetable',
            'storage': 'available',
            'timestamp': datetime.now().isoformat()
        }), 200
    except OSError as e:
        return jsonify({
            'status': 'unhealthy',
            'service': 'Campus Timetable',
            'storage': 'unavailable',
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }), 503


# Dataset uploads
@app.route('/upload', methods=['POST'])
def upload_file():
    upload = request.files.get('excelFile')
    if not upload or not upload.filename:
        return jsonify({'success': False, 'error': 'Please select a file to upload.'}), 400

    file_name = upload.filename
    if not allowed_file(file_name):
        return jsonify({'success': False, 'error': EXTENSION_NOT_ALLOWED}), 400

    try:
        data = upload.read()
        if len(data) > app.config['MAX_FILE_SIZE']:
            return jsonify({'success': False, 'error': FILE_TOO_LARGE}), 400

        store.write(file_name, data)
        try:
            validate_upload(file_name, store.open(file_name))
        except Exception:
            # Nothing that failed validation stays in the uploads folder
            store.delete(file_name)
            raise

        invalidate_cache(*LISTING_CACHES)
        app.logger.info(f"Stored upload {file_name} ({len(data)} bytes)")
        return jsonify({
            'success': True,
            'message': f"File '{file_name}' uploaded successfully to backend!",
            'fileName': file_name,
            'filePath': store.path(file_name),
            'fileType': get_extension(file_name).lstrip('.').upper()
        })

    except ValidationError as exc:
        return jsonify({'success': False, 'error': str(exc)}), 400
    except Exception as exc:
        app.logger.exception('Upload error')
        return jsonify({'success': False, 'error': str(exc) or 'An error occurred during file upload.'}), 500


@app.route('/files')
def list_files():
    try:
        details = store.list()
        return jsonify({
            'success': True,
            'files': [info.name for info in details],
            'fileDetails': [info.to_dict() for info in details]
        })
    except OSError as exc:
        app.logger.error(f"File listing failed: {exc}")
        return jsonify({'success': False, 'error': 'Failed to retrieve file list.'}), 500


@app.route('/parse/<filename>')
def parse_uploaded_file(filename):
    if not store.exists(filename):
        return jsonify({'success': False, 'error': 'File not found.'}), 404

    try:
        data = parse_file(filename, store.open(filename))
        return jsonify({'success': True, 'data': data, 'filename': filename})
    except ValidationError as exc:
        return jsonify({'success': False, 'error': str(exc)}), 400
    except Exception as exc:
        app.logger.exception('Parse error')
        return jsonify({'success': False, 'error': f'Failed to parse file: {exc}'}), 500


@app.route('/files/<filename>', methods=['DELETE'])
def delete_file(filename):
    try:
        store.delete(filename)
    except NotFoundError:
        return jsonify({'success': False, 'error': 'File not found.'}), 404
    except OSError as exc:
        app.logger.error(f"Delete of {filename} failed: {exc}")
        return jsonify({'success': False, 'error': f'Failed to delete file: {exc}'}), 500

    invalidate_cache(*LISTING_CACHES)
    return jsonify({'success': True, 'message': f"File '{filename}' deleted successfully."})


@app.route('/download-template')
def download_template():
    """Send an empty dataset workbook containing every required sheet."""
    return send_file(
        build_dataset_template(),
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        as_attachment=True,
        download_name='Dataset_template.xlsx'
    )


# Branch / division discovery
@app.route('/api/branches-divisions')
@cache_response(ttl=CACHE_TTL, prefix='branches_divisions')
def branches_divisions():
    try:
        excel_files = store.spreadsheets()
        if not excel_files:
            return jsonify({
                'success': True,
                'data': {'branches': [], 'divisions': [], 'message': 'No Excel files uploaded yet'}
            })

        branches, divisions = discover_branches_divisions(excel_files)
        app.logger.info(f"Discovered branches={branches} divisions={divisions}")
        return jsonify({
            'success': True,
            'data': {
                'branches': branches,
                'divisions': divisions,
                'availableFiles': excel_files,
                'debug': {
                    'totalFiles': len(excel_files),
                    'branchesFound': len(branches),
                    'divisionsFound': len(divisions)
                }
            }
        })
    except Exception as exc:
        app.logger.exception('Error fetching branches/divisions')
        return jsonify({
            'success': False,
            'error': f'Failed to fetch available branches and divisions: {exc}'
        }), 500


# Stored timetables
def load_timetables(branch=None, division=None):
    timetables = []
    for name in store.list_timetables(branch, division):
        try:
            content = store.read_json(name)
        except (ValueError, OSError) as exc:
            app.logger.warning(f"Could not read timetable file {name}: {exc}")
            continue
        if not isinstance(content, dict):
            app.logger.warning(f"Ignoring timetable file {name}: not a JSON object")
            continue
        timetables.append({'filename': name, **content})

    # Newest first
    timetables.sort(key=lambda t: parse_generated_at(t.get('generatedAt')), reverse=True)
    return timetables


@app.route('/api/timetables')
@cache_response(ttl=CACHE_TTL, prefix='timetables')
def get_timetables():
    branch = request.args.get('branch') or None
    division = request.args.get('division') or None
    try:
        timetables = load_timetables(branch, division)
        app.logger.info(f"Returning {len(timetables)} timetables for branch={branch} division={division}")
        return jsonify({'success': True, 'data': timetables})
    except Exception as exc:
        app.logger.exception('Error fetching timetables')
        return jsonify({'success': False, 'error': f'Failed to fetch timetables: {exc}'}), 500


@app.route('/api/timetables/<filename>/export')
def export_timetable(filename):
    if not is_timetable_name(filename) or not store.exists(filename):
        return jsonify({'success': False, 'error': 'File not found.'}), 404

    try:
        content = store.read_json(filename)
        table = content.get('timetable') or {}
    except (ValueError, AttributeError) as exc:
        return jsonify({'success': False, 'error': f'Failed to read timetable: {exc}'}), 500

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(table.get('headers') or [])
    for row in table.get('rows') or []:
        writer.writerow(row)

    output.seek(0)
    return send_file(
        io.BytesIO(output.getvalue().encode('utf-8')),
        mimetype='text/csv',
        as_attachment=True,
        download_name=filename[:-len('.json')] + '.csv'
    )


# Timetable generation
@app.route('/generate', methods=['POST'])
def generate_timetable():
    payload = request.get_json(silent=True) or {}
    branch = str(payload.get('branch') or '').strip()
    division = str(payload.get('division') or '').strip()
    year = payload.get('year')

    if not branch or not division:
        return jsonify({'success': False, 'error': 'Branch and division are required.'}), 400

    try:
        app.logger.info(f"Generate request received: branch={branch} division={division} year={year}")

        source, exact = find_source_file(branch, division)
        if exact:
            app.logger.info(f"Found specific file: {source}")
        else:
            app.logger.info(f"Using file: {source} and will filter data")

        sheets = read_workbook_sheets(store.open(source))
        data = collect_generation_data(sheets, branch, division)

        # Accepted and stored for reference; the filler does not use them
        constraints = {key: payload.get(key) or default for key, default in DEFAULT_CONSTRAINTS.items()}

        generator = TimetableGenerator()
        timetable = generator.generate(data)

        now = datetime.now(timezone.utc)
        generated_at = utc_now_iso(now)
        timetable_file = snapshot_name(branch, division, int(now.timestamp() * 1000))
        snapshot = {
            'branch': branch,
            'division': division,
            'year': year,
            'generatedAt': generated_at,
            'constraints': constraints,
            'timetable': timetable
        }
        try:
            store.write_json(timetable_file, snapshot)
            app.logger.info(f"Timetable saved as: {timetable_file}")
        except OSError as save_error:
            app.logger.warning(f"Could not save timetable file: {save_error}")
            timetable_file = None

        invalidate_cache('timetables')
        return jsonify({
            'success': True,
            'data': {
                'branch': branch,
                'division': division,
                'year': year,
                'timetable': timetable,
                'generatedAt': generated_at,
                'constraints': constraints,
                'filename': timetable_file
            }
        })

    except ValidationError as exc:
        return jsonify({'success': False, 'error': str(exc)}), 400
    except (NoDataError, FileNotFoundError) as exc:
        app.logger.warning(f"Timetable generation failed: {exc}")
        return jsonify({'success': False, 'error': str(exc)}), 500
    except Exception as exc:
        app.logger.exception('Timetable generation error')
        return jsonify({
            'success': False,
            'error': str(exc) or 'An unknown error occurred during timetable generation.'
        }), 500


# Dashboards
@app.route('/')
def index():
    return render_template('index.html', roles=DASHBOARD_ROLES)


@app.route('/dashboard/<role>')
def dashboard(role):
    if role not in DASHBOARD_ROLES:
        abort(404)
    return render_template(
        'dashboard.html',
        role=role,
        title=DASHBOARD_ROLES[role],
        sample_schedule=SAMPLE_SCHEDULES.get(role, []),
        messages=SAMPLE_MESSAGES if role in ('faculty', 'student') else []
    )


@app.route('/viewer')
def viewer():
    branch = request.args.get('branch') or None
    division = request.args.get('division') or None
    timetables = load_timetables(branch, division)
    latest = timetables[0] if timetables else None
    rows = (latest.get('timetable') or {}).get('rows', []) if latest else []
    return render_template(
        'viewer.html',
        timetable=latest,
        grid=build_grid(rows),
        days=DAYS,
        time_slots=TIME_SLOTS,
        free_period=FREE_PERIOD,
        branch=branch or '',
        division=division or ''
    )


if __name__ == '__main__':
    app.run(debug=True, port=int(os.getenv('PORT', 5000)), use_reloader=False, threaded=True)

# WSGI entry point used by gunicorn (gunicorn app:application)
if __name__ != '__main__':
    application = app
