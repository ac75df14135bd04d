#!/usr/bin/env python3
"""
Write the country leaderboard as a formatted DOCX table:
- Header row: bold, blue background, white text
- Alternating row colors for better readability

Usage:
    python leaderboard_docx.py output/country_leaderboard.parquet [output.docx]
"""

import sys
from pathlib import Path

import duckdb
from docx import Document
from docx.shared import RGBColor
from docx.oxml.ns import nsdecls
from docx.oxml import parse_xml

from load_sources import quote_path


HEADER_BG = "1F4E79"  # Dark blue
HEADER_TEXT = RGBColor(255, 255, 255)  # White
ALT_ROW_BG = "F2F2F2"  # Light gray

HEADERS = [
    ('country', 'Country'),
    ('total_country_account_cnt', 'Accounts'),
    ('total_country_sent_cnt', 'Sent messages'),
    ('rank_total_country_account_cnt', 'Rank (accounts)'),
    ('rank_total_country_sent_cnt', 'Rank (sent)'),
]


def set_cell_shading(cell, hex_color):
    """Set cell background color."""
    shading_elm = parse_xml(
        f'<w:shd {nsdecls("w")} w:fill="{hex_color}" w:val="clear"/>'
    )
    cell._tc.get_or_add_tcPr().append(shading_elm)


def format_table(table):
    """Header row bold white on blue, even body rows light gray."""
    for row_idx, row in enumerate(table.rows):
        for cell in row.cells:
            for paragraph in cell.paragraphs:
                for run in paragraph.runs:
                    if row_idx == 0:
                        run.bold = True
                        run.font.color.rgb = HEADER_TEXT
                    else:
                        run.font.color.rgb = RGBColor(0, 0, 0)

            if row_idx == 0:
                set_cell_shading(cell, HEADER_BG)
            elif row_idx % 2 == 0:
                set_cell_shading(cell, ALT_ROW_BG)


def write_leaderboard_docx(leaderboard, output_path, top_n=None):
    """
    Write a leaderboard DataFrame (one row per country) to a DOCX file.

    Args:
        leaderboard: DataFrame with the columns named in HEADERS
        output_path: Target .docx path, overwritten if it exists
        top_n: Rank cutoff shown in the intro line
    """
    doc = Document()
    doc.add_heading('Email Engagement: Country Leaderboard', level=1)
    if top_n is not None:
        doc.add_paragraph(
            f"Countries ranked within the top {top_n} by new accounts "
            f"or by sent messages ({len(leaderboard)} countries)."
        )

    table = doc.add_table(rows=1, cols=len(HEADERS))
    table.style = 'Table Grid'
    for cell, (_, title) in zip(table.rows[0].cells, HEADERS):
        cell.text = title

    for _, record in leaderboard.iterrows():
        cells = table.add_row().cells
        for cell, (column, _) in zip(cells, HEADERS):
            cell.text = str(record[column])

    format_table(table)

    output_path = Path(output_path)
    if output_path.exists():
        output_path.unlink()
    doc.save(str(output_path))
    return output_path


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    input_file = Path(sys.argv[1])
    output_file = sys.argv[2] if len(sys.argv) > 2 else input_file.with_suffix('.docx')
    leaderboard = duckdb.sql(f"SELECT * FROM read_parquet({quote_path(input_file)})").df()
    saved = write_leaderboard_docx(leaderboard, output_file)
    print(f"Leaderboard saved to: {saved}")
