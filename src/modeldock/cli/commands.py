"""CLI命令"""

from typing import Any, Dict, List

import click
import requests
from tabulate import tabulate

from ..server import run, setup_logging
from ..config import load_settings


def _get(ctx: click.Context, path: str) -> Any:
    """请求运行中的服务"""
    url = f"{ctx.obj['server'].rstrip('/')}{ctx.obj['settings'].api_prefix}{path}"
    try:
        response = requests.get(url, timeout=10)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise click.ClickException(f"Request to {url} failed: {e}")
    return response.json()


@click.group()
@click.option('--config', 'config_path', envvar='MODELDOCK_CONFIG', help='YAML配置文件路径')
@click.option('--server', default=None, help='服务地址，默认 http://localhost:<port>')
@click.pass_context
def cli(ctx, config_path, server):
    """推理模型部署与测试工具"""
    settings = load_settings(config_path)
    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings
    ctx.obj['server'] = server or f"http://localhost:{settings.port}"


@cli.command()
@click.option('--host', default=None, help='监听地址')
@click.option('--port', type=int, default=None, help='监听端口')
@click.pass_context
def serve(ctx, host, port):
    """启动HTTP服务"""
    settings = ctx.obj['settings']
    setup_logging(settings)
    run(settings, host=host, port=port)


@cli.command()
@click.option('--status', type=click.Choice(['running', 'stopped']), help='筛选指定状态的模型')
@click.pass_context
def models(ctx, status):
    """列出所有模型"""
    items: List[Dict[str, Any]] = _get(ctx, '/models')
    if status:
        items = [m for m in items if m['status'] == status]

    headers = ['ID', '名称', '状态', '端口', '接口', '测试数', '创建时间']
    rows = [
        [m['id'], m['name'], m['status'], m['port'], m['endpoint'], m['image_count'], m['created_at']]
        for m in items
    ]

    if rows:
        click.echo(tabulate(rows, headers=headers, tablefmt='grid'))
    else:
        click.echo("没有找到任何模型")


@cli.command()
@click.option('--model', 'model_name', help='筛选指定模型名称的结果')
@click.option('--failed', is_flag=True, help='只显示失败的结果')
@click.pass_context
def results(ctx, model_name, failed):
    """列出测试结果"""
    items: List[Dict[str, Any]] = _get(ctx, '/test-results')
    if model_name:
        items = [r for r in items if r['model'] == model_name]
    if failed:
        items = [r for r in items if r['status'] == 'failed']

    headers = ['文件', '模型', '预测', '置信度', '耗时(ms)', '状态', '时间']
    rows = [
        [r['filename'], r['model'], r['prediction'], r['confidence'],
         r['inference_time_ms'], r['status'], r['timestamp']]
        for r in items
    ]

    if rows:
        click.echo(tabulate(rows, headers=headers, tablefmt='grid'))
    else:
        click.echo("没有找到任何测试结果")


@cli.command()
@click.pass_context
def analytics(ctx):
    """查看统计信息"""
    data = _get(ctx, '/analytics')

    click.echo(f"模型总数: {data['totalModels']}")
    click.echo(f"运行中: {data['activeModels']}")
    click.echo(f"测试总数: {data['totalTests']}")
    click.echo(f"平均置信度: {data['avgAccuracy']}")
    click.echo(f"平均耗时: {data['avgInference']}")
    click.echo(f"成功率: {data['successRate']}%")

    rows = [[m['name'], m['status'], m['tests'], m['accuracy']] for m in data['models']]
    if rows:
        click.echo()
        click.echo(tabulate(rows, headers=['名称', '状态', '测试数', '平均置信度'], tablefmt='grid'))
