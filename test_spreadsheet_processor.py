"""
Unit tests for the spreadsheet processor
Covers CSV parsing, workbook reading, categorisation and upload validation
"""
import unittest
import io

from openpyxl import Workbook, load_workbook

from spreadsheet_processor import (
    ParseError,
    ValidationError,
    REQUIRED_DATASET_SHEETS,
    allowed_file,
    build_dataset_template,
    categorize_workbook,
    detect_data_type,
    get_missing_sheets,
    parse_file,
    read_csv_rows,
    read_workbook_sheets,
    validate_upload,
)


def make_workbook(sheets):
    """Build an in-memory .xlsx from {sheet name: [header, row, ...]}."""
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(name)
        for row in rows:
            ws.append(row)
    mem = io.BytesIO()
    wb.save(mem)
    wb.close()
    mem.seek(0)
    return mem


class TestCSVParsing(unittest.TestCase):

    def test_rows_keyed_by_header(self):
        """Each data line becomes a dictionary keyed by the header row"""
        csv_data = "Name,Course,Branch\nDr. Rao,Maths,DS\nDr. Iyer,Physics,IT\n"
        rows = read_csv_rows(io.BytesIO(csv_data.encode('utf-8')))

        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0], {'Name': 'Dr. Rao', 'Course': 'Maths', 'Branch': 'DS'})
        self.assertEqual(rows[1]['Course'], 'Physics')

    def test_row_count_is_line_count_minus_header(self):
        lines = ["id,value"] + [f"{i},v{i}" for i in range(25)]
        rows = read_csv_rows(io.BytesIO("\n".join(lines).encode('utf-8')))

        self.assertEqual(len(rows), len(lines) - 1)

    def test_short_lines_padded_with_empty_strings(self):
        """Every header is present in every row, even when values are missing"""
        csv_data = "a,b,c\n1\n1,2\n"
        rows = read_csv_rows(io.BytesIO(csv_data.encode('utf-8')))

        for row in rows:
            self.assertEqual(set(row), {'a', 'b', 'c'})
        self.assertEqual(rows[0], {'a': '1', 'b': '', 'c': ''})

    def test_blank_lines_skipped(self):
        csv_data = "a,b\n1,2\n\n3,4\n"
        rows = read_csv_rows(io.BytesIO(csv_data.encode('utf-8')))

        self.assertEqual([r['a'] for r in rows], ['1', '3'])

    def test_quotes_and_whitespace_stripped(self):
        csv_data = '"Course name" , "Branch"\n"Data Science", DS \r\n'
        rows = read_csv_rows(io.BytesIO(csv_data.encode('utf-8')))

        self.assertEqual(rows[0], {'Course name': 'Data Science', 'Branch': 'DS'})

    def test_byte_order_mark_ignored(self):
        csv_data = b"\xef\xbb\xbfName,Course\nDr. Rao,Maths\n"
        rows = read_csv_rows(io.BytesIO(csv_data))

        self.assertIn('Name', rows[0])

    def test_header_only_raises(self):
        with self.assertRaises(ParseError) as context:
            read_csv_rows(io.BytesIO(b"name,email\n"))

        self.assertIn('at least a header and one data row', str(context.exception))

    def test_empty_file_raises(self):
        with self.assertRaises(ParseError):
            read_csv_rows(io.BytesIO(b""))

    def test_non_utf8_bytes_raise_parse_error(self):
        """Latin-1 exports are rejected instead of escaping as UnicodeDecodeError"""
        csv_data = 'Name,City\nJos\xe9,M\xfcnchen\n'.encode('latin-1')

        with self.assertRaises(ParseError) as context:
            read_csv_rows(io.BytesIO(csv_data))

        self.assertIn('not UTF-8', str(context.exception))

    def test_oversized_field_raises_parse_error(self):
        csv_data = b"a,b\n" + b"x" * 200000 + b",1\n"

        with self.assertRaises(ParseError) as context:
            read_csv_rows(io.BytesIO(csv_data))

        self.assertIn('Malformed CSV', str(context.exception))


class TestWorkbookReading(unittest.TestCase):

    def test_sheet_rows_as_strings(self):
        stream = make_workbook({
            'Venue': [['Room Number', 'Capacity'], ['Room-101', 60], ['Lab-A', 30.0]],
        })
        sheets = read_workbook_sheets(stream)

        self.assertEqual(sheets['Venue'], [
            {'Room Number': 'Room-101', 'Capacity': '60'},
            {'Room Number': 'Lab-A', 'Capacity': '30'},
        ])

    def test_blank_rows_and_cells(self):
        stream = make_workbook({
            'Faculty': [['Name', 'Course'], [None, None], ['Dr. Rao', None]],
        })
        rows = read_workbook_sheets(stream)['Faculty']

        self.assertEqual(rows, [{'Name': 'Dr. Rao', 'Course': ''}])

    def test_only_requested_sheets(self):
        stream = make_workbook({
            'Faculty': [['Name'], ['Dr. Rao']],
            'Venue': [['Room Number'], ['Room-101']],
        })
        sheets = read_workbook_sheets(stream, names=['Venue', 'Missing'])

        self.assertEqual(list(sheets), ['Venue'])

    def test_empty_sheet(self):
        stream = make_workbook({'Faculty': []})

        self.assertEqual(read_workbook_sheets(stream), {'Faculty': []})

    def test_garbage_is_invalid_workbook(self):
        with self.assertRaises(ValidationError) as context:
            read_workbook_sheets(io.BytesIO(b'definitely not a zip file'))

        self.assertEqual(str(context.exception), 'Invalid Excel file format or corrupted file.')


class TestCategorisation(unittest.TestCase):

    def test_detect_data_type(self):
        self.assertEqual(detect_data_type({'Teacher Name': 'x'}), 'faculty')
        self.assertEqual(detect_data_type({'Instructor': 'x'}), 'faculty')
        self.assertEqual(detect_data_type({'Subject': 'x'}), 'subjects')
        self.assertEqual(detect_data_type({'Course name': 'x'}), 'subjects')
        self.assertEqual(detect_data_type({'Classroom': 'x'}), 'rooms')
        self.assertEqual(detect_data_type({'Venue': 'x'}), 'rooms')
        self.assertEqual(detect_data_type({'Roll No': 'x'}), 'students')

    def test_faculty_wins_over_course_column(self):
        """Faculty rows usually carry a Course column too"""
        self.assertEqual(detect_data_type({'Faculty': 'x', 'Course': 'y'}), 'faculty')

    def test_recognised_sheets(self):
        sheets = {
            'Theory Courses': [{'Course name': 'Maths'}],
            'Lab Courses': [{'Course name': 'Physics Lab'}],
            'Faculty': [{'Name': 'Dr. Rao'}],
            'Venue': [{'Room Number': 'Room-101'}],
            'Batch Details': [{'Batch': 'B1'}],
            'Load Dist': [{'Hours': '4'}],
        }
        parsed = categorize_workbook(sheets)

        self.assertEqual(set(parsed), {'subjects', 'faculty', 'rooms', 'students'})
        self.assertEqual([s['Course name'] for s in parsed['subjects']], ['Maths', 'Physics Lab'])

    def test_unrecognised_sheets_sniffed(self):
        parsed = categorize_workbook({'Sheet1': [{'Room': 'R1'}], 'Sheet2': [{'Faculty': 'F'}]})

        self.assertEqual(parsed, {'rooms': [{'Room': 'R1'}]})

    def test_parse_csv_file(self):
        parsed = parse_file('faculty.csv', io.BytesIO(b"Faculty Name,Course\nDr. Rao,Maths\n"))

        self.assertEqual(parsed, {'faculty': [{'Faculty Name': 'Dr. Rao', 'Course': 'Maths'}]})

    def test_parse_unsupported_type(self):
        with self.assertRaises(ValidationError) as context:
            parse_file('notes.txt', io.BytesIO(b'hello'))

        self.assertIn('Unsupported file type', str(context.exception))


class TestUploadValidation(unittest.TestCase):

    def full_dataset(self, skip=()):
        return make_workbook({name: [['Header']] for name in REQUIRED_DATASET_SHEETS if name not in skip})

    def test_allowed_file(self):
        self.assertTrue(allowed_file('DS1_Dataset.xlsx'))
        self.assertTrue(allowed_file('legacy.XLS'))
        self.assertTrue(allowed_file('faculty.csv'))
        self.assertFalse(allowed_file('notes.txt'))
        self.assertFalse(allowed_file('noextension'))

    def test_get_missing_sheets_keeps_required_order(self):
        missing = get_missing_sheets({'Faculty'}, ['Venue', 'Faculty', 'Load Dist'])

        self.assertEqual(missing, ['Venue', 'Load Dist'])

    def test_complete_dataset_passes(self):
        validate_upload('DS1_Dataset.xlsx', self.full_dataset())

    def test_dataset_missing_venue(self):
        with self.assertRaises(ValidationError) as context:
            validate_upload('DS1_Dataset.xlsx', self.full_dataset(skip=('Venue',)))

        self.assertEqual(str(context.exception), 'Missing required sheets: Venue')

    def test_dataset_missing_several_sheets(self):
        with self.assertRaises(ValidationError) as context:
            validate_upload('IT2_Dataset.xlsx', self.full_dataset(skip=('Faculty', 'Load Dist')))

        self.assertEqual(str(context.exception), 'Missing required sheets: Faculty, Load Dist')

    def test_other_workbook_names_skip_sheet_check(self):
        validate_upload('staff.xlsx', make_workbook({'Sheet1': [['Name'], ['Dr. Rao']]}))

    def test_corrupted_workbook(self):
        with self.assertRaises(ValidationError) as context:
            validate_upload('DS1_Dataset.xlsx', io.BytesIO(b'garbage'))

        self.assertEqual(str(context.exception), 'Invalid Excel file format or corrupted file.')

    def test_invalid_csv(self):
        with self.assertRaises(ValidationError) as context:
            validate_upload('faculty.csv', io.BytesIO(b'only,a,header'))

        self.assertTrue(str(context.exception).startswith('Invalid CSV file:'))

    def test_non_utf8_csv(self):
        with self.assertRaises(ValidationError) as context:
            validate_upload('staff.csv', io.BytesIO('Name\nJos\xe9\n'.encode('latin-1')))

        self.assertTrue(str(context.exception).startswith('Invalid CSV file:'))

    def test_valid_csv_passes(self):
        validate_upload('faculty.csv', io.BytesIO(b'Name,Course\nDr. Rao,Maths\n'))

    def test_unknown_extension_rejected(self):
        with self.assertRaises(ValidationError):
            validate_upload('notes.txt', io.BytesIO(b'hello'))

    def test_dataset_template_has_required_sheets(self):
        wb = load_workbook(build_dataset_template())

        self.assertEqual(wb.sheetnames, REQUIRED_DATASET_SHEETS)
        self.assertEqual(wb['Venue']['A1'].value, 'Room Number')
        validate_upload('DS9_Dataset.xlsx', build_dataset_template())


if __name__ == '__main__':
    unittest.main(verbosity=2)
