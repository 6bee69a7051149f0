"""命令行工具"""
from .commands import cli


def main():
    cli(obj={})
