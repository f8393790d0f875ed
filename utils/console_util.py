from typing import Any, Dict, List, Optional, Set

from rich.console import Console
from rich.layout import Layout
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from config.config import CONSOLE_COLORS
from module.conflict_resolver import ConflictAnalysis, ConflictSelection
from utils.image_process import image_size

# 全局控制台实例
console = Console(color_system="truecolor", force_terminal=True)


class BaseLayout:
    """基础布局类，提供创建Rich布局的基本功能"""

    def __init__(self, panel_height=32, console=None):
        """
        初始化基础布局

        Args:
            panel_height: 面板高度
            console: Rich控制台实例
        """
        self.panel_height = panel_height
        self.console = console or globals().get("console", Console())
        self.layout = Layout()

    def create_layout(self):
        """创建基本布局结构（由子类实现）"""
        pass

    def render(self, title=""):
        """
        渲染布局为面板并返回

        Args:
            title: 面板标题

        Returns:
            Panel: Rich面板对象
        """
        panel = Panel(
            self.layout,
            title=title,
            height=self.panel_height + 2,
            padding=0,
        )
        return panel

    def print(self, title=""):
        """
        打印布局到控制台

        Args:
            title: 面板标题
        """
        panel = self.render(title)
        self.console.print()
        self.console.print()
        self.console.print(panel)


class ConflictLayout(BaseLayout):
    """并排显示将被更新和将被删除的文件"""

    def __init__(self, analysis: ConflictAnalysis, panel_height=None, colors=None, console=None):
        """
        初始化冲突布局

        Args:
            analysis: 本次导入的冲突分析结果
            panel_height: 面板高度，默认按条目数量计算
            colors: 控制台颜色表
            console: Rich控制台实例
        """
        rows = max(len(analysis.same_name), len(analysis.stale), 1)
        super().__init__(panel_height or min(rows + 6, 32), console)
        self.analysis = analysis
        self.colors = colors or CONSOLE_COLORS
        self.create_layout()

    def entries(self) -> List[str]:
        """编号顺序：先更新项，后删除项"""
        return list(self.analysis.same_name) + list(self.analysis.stale)

    def _table(self, paths: List[str], start: int, color: str, empty_message: str) -> Table:
        table = Table(expand=True, show_edge=False, box=None)
        table.add_column("#", justify="right", style="dim", width=4)
        table.add_column("path", style=color, overflow="fold")
        if not paths:
            table.add_row("", Text(empty_message, style="dim"))
        for offset, path in enumerate(paths):
            table.add_row(str(start + offset), self.analysis.display(path))
        return table

    def create_layout(self):
        """创建冲突布局结构"""
        same_name = list(self.analysis.same_name)
        stale = list(self.analysis.stale)
        self.layout.split_row(
            Layout(
                Panel(
                    self._table(same_name, 1, self.colors.get("texture", "green"), "No files to update"),
                    title=f"update - [green]{len(same_name)}[/green]",
                    padding=0,
                    expand=True,
                ),
                name="update",
                ratio=1,
            ),
            Layout(
                Panel(
                    self._table(stale, len(same_name) + 1, self.colors.get("delete", "bright_red"), "No stale files"),
                    title=f"delete - [red]{len(stale)}[/red]",
                    padding=0,
                    expand=True,
                ),
                name="delete",
                ratio=1,
            ),
        )


def _parse_indices(answer: str, limit: int) -> Set[int]:
    """解析 "1,3-5" 形式的编号，忽略越界与无效输入"""
    indices: Set[int] = set()
    for token in answer.replace(" ", ",").split(","):
        token = token.strip()
        if not token:
            continue
        if "-" in token:
            start, _, end = token.partition("-")
            if start.isdigit() and end.isdigit():
                indices.update(range(int(start), int(end) + 1))
            continue
        if token.isdigit():
            indices.add(int(token))
    return {i for i in indices if 1 <= i <= limit}


class ConsoleConfirmer:
    """终端交互式的更新/删除确认"""

    def __init__(self, console: Optional[Console] = None, colors: Optional[Dict[str, str]] = None):
        self.console = console or globals()["console"]
        self.colors = colors or CONSOLE_COLORS

    def confirm_update(self, analysis: ConflictAnalysis) -> bool:
        self.console.print("[yellow]Existing import targets found:[/yellow]")
        if analysis.has_existing_output_directory:
            self.console.print(f"  Texture folder: {analysis.display(analysis.output_root)}")
        if analysis.has_existing_prefab and analysis.prefab_path:
            self.console.print(f"  Prefab: {analysis.display(analysis.prefab_path)}")
        return Confirm.ask("Update the existing files?", default=True, console=self.console)

    def select(self, analysis: ConflictAnalysis, default: ConflictSelection) -> Optional[ConflictSelection]:
        """在默认选择上排除用户输入的编号，取消时返回None"""
        layout = ConflictLayout(analysis, colors=self.colors, console=self.console)
        layout.print(title="Select files to update / delete")

        entries = layout.entries()
        answer = Prompt.ask(
            "Numbers to leave untouched (e.g. 1,3-5), empty keeps the default",
            default="",
            show_default=False,
            console=self.console,
        )
        excluded = {entries[i - 1] for i in _parse_indices(answer, len(entries))}
        selection = ConflictSelection(
            confirmed=True,
            paths_to_update=set(default.paths_to_update) - excluded,
            paths_to_delete=set(default.paths_to_delete) - excluded,
        )

        self.console.print(
            f"[green]{len(selection.paths_to_update)}[/green] to update, "
            f"[red]{len(selection.paths_to_delete)}[/red] to delete"
        )
        if not Confirm.ask("Apply?", default=True, console=self.console):
            return None
        return selection


def _node_label(node: Any, colors: Dict[str, str]) -> Text:
    kind = getattr(node, "kind", "container")
    color_key = {
        "sprite": "texture",
        "ui_image": "texture",
        "text": "text",
        "ui_text": "text",
        "container": "container",
    }.get(kind, "unknown")
    if any(b.kind == "animator" for b in getattr(node, "behaviors", [])):
        color_key = "animation"
    elif any(b.kind == "button" for b in getattr(node, "behaviors", [])):
        color_key = "button"

    label = Text(str(getattr(node, "name", node)), style=colors.get(color_key, "white"))
    label.append(f"  [{kind}]", style="dim")

    image = (getattr(node, "properties", {}) or {}).get("image")
    if image:
        size = image_size(image)
        if size:
            label.append(f"  {size[0]}x{size[1]}", style="dim")
    behaviors = [b.kind for b in getattr(node, "behaviors", [])]
    if behaviors:
        label.append(f"  +{','.join(behaviors)}", style="dim")
    return label


def print_node_tree(root: Any, console: Optional[Console] = None, colors: Optional[Dict[str, str]] = None) -> Tree:
    """显示生成的节点层级"""
    console = console or globals()["console"]
    colors = colors or CONSOLE_COLORS

    tree = Tree(_node_label(root, colors))

    def walk(node: Any, branch: Tree) -> None:
        for child in getattr(node, "children", []):
            walk(child, branch.add(_node_label(child, colors)))

    walk(root, tree)
    console.print(tree)
    return tree
