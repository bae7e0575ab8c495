"""
Numbered terminal menus driven by an explicit screen stack.

Each screen id maps to a function that builds its Menu. Choosing an
option runs its action, and the Transition the action returns decides
what happens next:

    STAY        redraw the current screen (also what None means)
    push(id)    open another screen on top of this one
    POP         go back to the previous screen
    EXIT        leave the menu loop

Going back pops the stack, so a long session never nests deeper than
the menus themselves.

Usage:
    stack = MenuStack({"main": build_main, "tools": build_tools}, start="main")
    stack.run()
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional

import click

logger = logging.getLogger(__name__)

DIVIDER = "=" * 50


@dataclass(frozen=True)
class Transition:
    """What the menu loop does after an action."""
    kind: str
    target: Optional[Hashable] = None


STAY = Transition("stay")
POP = Transition("pop")
EXIT = Transition("exit")


def push(target: Hashable) -> Transition:
    return Transition("push", target)


@dataclass
class MenuOption:
    label: str
    action: Callable[[], Optional[Transition]]


@dataclass
class Menu:
    """One screen: a title, an optional header and numbered options.

    Args:
        title: Shown between dividers at the top.
        options: Numbered from 1 in the order given.
        header: Called before the options are listed (status blocks etc).
        intro: Lines printed under the title.
    """
    title: str
    options: List[MenuOption]
    header: Optional[Callable[[], None]] = None
    intro: List[str] = field(default_factory=list)


def prompt_choice(count: int, message: Optional[str] = None) -> int:
    """Ask for a number between 1 and count until one is given. Returns it 0-indexed."""
    message = message or f"Choose an option [1-{count}]"
    while True:
        raw = click.prompt(message, default="", show_default=False).strip()
        if raw.isdigit() and 1 <= int(raw) <= count:
            return int(raw) - 1
        click.secho("✗ Invalid option. Try again.", fg="red")


def show_menu(menu: Menu) -> None:
    click.clear()
    click.echo("")
    click.secho(f"{DIVIDER}\n  {menu.title}\n{DIVIDER}", bold=True)
    click.echo("")
    for line in menu.intro:
        click.echo(line)
    if menu.intro:
        click.echo("")
    if menu.header:
        menu.header()
        click.echo("")
    for number, option in enumerate(menu.options, start=1):
        click.echo(f"{number}. {option.label}")
    click.echo("")


def pause() -> None:
    """Wait for a key press before returning to the previous screen."""
    click.echo("")
    click.pause("Press any key to go back to the previous menu...")


class MenuStack:
    """Runs menus until an EXIT transition or the stack is empty.

    Args:
        screens: Screen id -> function building that screen's Menu.
                 Builders are called on every redraw so headers stay current.
        start: Screen id shown first.
    """

    def __init__(self, screens: Dict[Hashable, Callable[[], Menu]], start: Hashable):
        if start not in screens:
            raise KeyError(f"Unknown start screen: {start!r}")
        self.screens = screens
        self.start = start
        self._stack: List[Hashable] = []

    @property
    def current(self) -> Optional[Hashable]:
        return self._stack[-1] if self._stack else None

    @property
    def depth(self) -> int:
        return len(self._stack)

    def apply(self, transition: Optional[Transition]) -> None:
        """Update the stack for a transition."""
        transition = transition or STAY

        if transition.kind == "stay":
            return
        if transition.kind == "push":
            if transition.target not in self.screens:
                raise KeyError(f"Unknown screen: {transition.target!r}")
            self._stack.append(transition.target)
        elif transition.kind == "pop":
            self._stack.pop()
        elif transition.kind == "exit":
            self._stack.clear()
        else:
            raise ValueError(f"Unknown transition: {transition.kind}")

        logger.debug(f"Menu stack: {self._stack}")

    def step(self) -> None:
        """Show the current screen and handle one choice."""
        menu = self.screens[self.current]()
        show_menu(menu)
        index = prompt_choice(len(menu.options))
        self.apply(menu.options[index].action())

    def run(self) -> None:
        self._stack = [self.start]
        while self._stack:
            self.step()
