'''
Benchmark batch report: performance matrix, rankings and the summary.txt,
results.csv, results.json and results.xlsx exports.
'''

import json
import os
from datetime import datetime
from importlib import resources

import pandas as pd
import xlsxwriter
from jinja2 import Template

from sparkctl.lib import globals
from sparkctl.lib.model_catalog import find_model, catalog_index

log = globals.log

CSV_COLUMNS = ['model', 'model_short', 'nodes', 'tp', 'output_throughput', 'total_throughput',
    'ttft_ms', 'itl_ms', 'e2e_ms', 'status']
METRIC_COLUMNS = ['output_throughput', 'total_throughput', 'ttft_ms', 'itl_ms', 'e2e_ms']
RULE = '━' * 105


def results_dataframe( results ):
    """
    One row per BenchmarkResult in CSV column order, plus a catalog_order
    column used as the last tie-break.
    """
    rows = [result.model_dump() for result in results]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    df['catalog_order'] = [_catalog_order(result, i) for i, result in enumerate(results)]
    return df


def _catalog_order(result, position):
    profile = find_model(result.model)
    if profile is None:
        return 1000 + position
    return catalog_index(profile)


def rank_results( results, metric, ascending ):
    """
    Successful rows with a value for metric, sorted by it. Ties break on the
    model short name (ascending) and then on catalog order.
    """
    df = results_dataframe(results)
    df = df[(df['status'] == 'OK') & df[metric].notna()]
    return df.sort_values(by=[metric, 'model_short', 'catalog_order'], ascending=[ascending, True, True],
        kind='mergesort').reset_index(drop=True)


def throughput_ranking( results ):
    return rank_results(results, 'output_throughput', ascending=False)


def ttft_ranking( results ):
    return rank_results(results, 'ttft_ms', ascending=True)


def _fmt_metric(value):
    if value is None or pd.isna(value):
        return 'N/A'
    return f'{value:.2f}'


def matrix_rows( results ):
    rows = []
    for result in results:
        if result.ok:
            metrics = {column: _fmt_metric(getattr(result, column)) for column in METRIC_COLUMNS}
        else:
            metrics = {column: '-' for column in METRIC_COLUMNS}
        rows.append(dict(model_short=result.model_short, nodes=result.nodes, tp=result.tp,
            status=result.status, **metrics))
    return rows


def export_paths( output_dir ):
    return {
        'summary': os.path.join(output_dir, 'summary.txt'),
        'csv': os.path.join(output_dir, 'results.csv'),
        'json': os.path.join(output_dir, 'results.json'),
        'xlsx': os.path.join(output_dir, 'results.xlsx'),
    }


def render_summary( results, bench, output_dir, total_seconds=0, date=None ):
    template_content = resources.files('sparkctl.input.templates').joinpath('summary.txt.template').read_text()
    template = Template(template_content)
    return template.render(
        rule=RULE,
        date=date or datetime.now().strftime('%a %b %d %H:%M:%S %Y'),
        total_minutes=total_seconds // 60,
        total_seconds=total_seconds % 60,
        bench=bench,
        matrix=matrix_rows(results),
        throughput_ranking=throughput_ranking(results).to_dict('records'),
        ttft_ranking=ttft_ranking(results).to_dict('records'),
        files=export_paths(output_dir),
        output_dir=output_dir,
    )


def write_csv( results, csv_file ):
    results_dataframe(results)[CSV_COLUMNS].to_csv(csv_file, index=False)


def write_json( results, bench, json_file, timestamp, total_seconds ):
    summary = {
        'timestamp': timestamp,
        'config': {
            'profile': bench.profile,
            'num_prompts': bench.num_prompts,
            'input_len': bench.input_len,
            'output_len': bench.output_len,
        },
        'total_time_seconds': total_seconds,
        'models_tested': len(results),
        'results': [result.model_dump() for result in results],
    }
    with open(json_file, 'w', encoding='utf-8') as fp:
        json.dump(summary, fp, indent=2)


def write_xlsx( results, xlsx_file ):
    """Results sheet plus one sheet per ranking."""
    workbook = xlsxwriter.Workbook( xlsx_file )
    header_format = workbook.add_format(
       {
           "bold": 1,
           "border": 1,
           "align": "center",
           "valign": "vcenter",
           "bg_color": "yellow",
       }
    )
    fail_format = workbook.add_format({"font_color": "#E41A1C"})

    sheet = workbook.add_worksheet('Results')
    for col, name in enumerate(CSV_COLUMNS):
        sheet.write(0, col, name, header_format)
    for row, result in enumerate(results, start=1):
        values = result.model_dump()
        for col, name in enumerate(CSV_COLUMNS):
            value = values[name]
            if value is None:
                continue
            if name == 'status' and value != 'OK':
                sheet.write(row, col, value, fail_format)
            else:
                sheet.write(row, col, value)
    sheet.set_column(0, 0, 40)
    sheet.set_column(1, 1, 20)
    sheet.set_column(2, len(CSV_COLUMNS) - 1, 16)

    for title, ranked, metric in [('Throughput Ranking', throughput_ranking(results), 'output_throughput'),
                                  ('TTFT Ranking', ttft_ranking(results), 'ttft_ms')]:
        rank_sheet = workbook.add_worksheet(title)
        for col, name in enumerate(['rank', 'model_short', metric, 'tp']):
            rank_sheet.write(0, col, name, header_format)
        for row, record in enumerate(ranked.to_dict('records'), start=1):
            rank_sheet.write(row, 0, row)
            rank_sheet.write(row, 1, record['model_short'])
            rank_sheet.write(row, 2, record[metric])
            rank_sheet.write(row, 3, record['tp'])
        rank_sheet.set_column(1, 1, 20)
    workbook.close()


def export_results( results, bench, output_dir, timestamp, total_seconds ):
    """Write all exports and return (summary text, {kind: path})."""
    os.makedirs(output_dir, exist_ok=True)
    paths = export_paths(output_dir)
    summary = render_summary(results, bench, output_dir, total_seconds)
    with open(paths['summary'], 'w', encoding='utf-8') as fp:
        fp.write(summary)
    write_csv(results, paths['csv'])
    write_json(results, bench, paths['json'], timestamp, total_seconds)
    write_xlsx(results, paths['xlsx'])
    log.info(f'Benchmark report written to {output_dir}')
    return summary, paths
