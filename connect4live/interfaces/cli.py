"""
cli.py - Command-line interface for the Connect Four session engine

This module provides a CLI for running the WebSocket server, playing
against the bot in a terminal, analyzing board positions and printing
the leaderboard and per-player records.
"""

import argparse
import sys
from typing import List, Optional

import numpy as np

from connect4live.ai.minimax import BotPlayer, DEFAULT_DEPTH
from connect4live.config import ServerConfig
from connect4live.data.data_manager import DataManager, DEFAULT_LEADERBOARD_SIZE
from connect4live.debug import debug
from connect4live.errors import InvalidMove
from connect4live.game.board import Board
from connect4live.game.rules import RulesEngine
from connect4live.game.win_checker import find_winner
from connect4live.utils import COLS, Player, GameStatus, parse_position

DEBUG_LEVELS = ['none', 'error', 'warning', 'info', 'debug', 'trace']


class SimpleCLI:
    """Simple command-line interface for the session engine."""

    def __init__(self):
        """Initialize the CLI."""
        self.args = None

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='connect4live',
            description='Real-time Connect Four sessions with a bot fallback',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
    Examples:

    # Run the WebSocket server on port 3000
    python run.py serve --port 3000

    # Play against the bot in the terminal
    python run.py play --depth 4

    # Analyze a position (42 values, top row first)
    python run.py analyze --position 0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,0,1,1,1,0,2,2,0

    # Show the ten best players
    python run.py leaderboard --limit 10

    # Show one player's record
    python run.py stats --name alice
    """)
        parser.add_argument('--debug_level',
                            choices=DEBUG_LEVELS,
                            default='info',
                            help='Set debug level: none (silent), error, warning, info, debug, trace (most verbose)')
        parser.add_argument('--log_file', type=str, help='Also write log output to this file')

        subparsers = parser.add_subparsers(dest='command', help='Command to run')

        # Serve command
        serve_parser = subparsers.add_parser('serve', help='Run the WebSocket server')
        serve_parser.add_argument('--host', type=str, help='Interface to bind (default: 0.0.0.0)')
        serve_parser.add_argument('--port', type=int, help='Port to listen on (default: 3000)')
        serve_parser.add_argument('--fallback_delay', type=float,
                                  help='Seconds before a bot replaces a missing opponent')
        serve_parser.add_argument('--reconnect_window', type=float,
                                  help='Seconds a disconnected player has to reconnect')
        serve_parser.add_argument('--bot_depth', type=int, help='Bot search depth in plies')
        serve_parser.add_argument('--data_dir', type=str, help='Directory for results and events')
        serve_parser.add_argument('--no_analytics', action='store_true', help='Disable the event log')

        # Play command
        play_parser = subparsers.add_parser('play', help='Play against the bot interactively')
        play_parser.add_argument('--depth', type=int, default=DEFAULT_DEPTH, help='Bot search depth')
        play_parser.add_argument('--second', action='store_true', help='Let the bot move first')

        # Analyze command
        analyze_parser = subparsers.add_parser('analyze', help='Analyze a board position')
        analyze_parser.add_argument('--position', type=str, required=True,
                                    help='Comma-separated 42 values (0/1/2), top row first')
        analyze_parser.add_argument('--depth', type=int, default=DEFAULT_DEPTH, help='Bot search depth')

        # Leaderboard command
        leaderboard_parser = subparsers.add_parser('leaderboard', help='Show the leaderboard')
        leaderboard_parser.add_argument('--limit', type=int, default=DEFAULT_LEADERBOARD_SIZE,
                                        help='Number of entries to show')
        leaderboard_parser.add_argument('--data_dir', type=str, help='Directory holding the results')

        # Stats command
        stats_parser = subparsers.add_parser('stats', help='Show one player\'s record and recent sessions')
        who = stats_parser.add_mutually_exclusive_group(required=True)
        who.add_argument('--name', type=str, help='Display name of the player')
        who.add_argument('--id', type=str, help='Stored identity id of the player')
        stats_parser.add_argument('--limit', type=int, default=5, help='Number of recent sessions to show')
        stats_parser.add_argument('--data_dir', type=str, help='Directory holding the results')

        return parser

    def parse_args(self, argv: Optional[List[str]] = None) -> None:
        """Parse command-line arguments and configure logging."""
        self.args = self.build_parser().parse_args(argv)

        debug.set_from_string(self.args.debug_level)
        if self.args.log_file:
            debug.configure(log_file=self.args.log_file)

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI based on the parsed arguments."""
        if not self.args:
            self.parse_args(argv)

        if self.args.command == 'serve':
            return self.serve()
        elif self.args.command == 'play':
            return self.play_game()
        elif self.args.command == 'analyze':
            return self.analyze_position()
        elif self.args.command == 'leaderboard':
            return self.show_leaderboard()
        elif self.args.command == 'stats':
            return self.show_stats()

        print("Please specify a command. Use --help for options.")
        return 1

    def load_config(self) -> ServerConfig:
        """Environment settings with command-line flags applied on top."""
        args = self.args
        overrides = {name: getattr(args, name, None)
                     for name in ('host', 'port', 'fallback_delay', 'reconnect_window', 'bot_depth', 'data_dir')}
        if getattr(args, 'no_analytics', False):
            overrides['analytics_enabled'] = False
        return ServerConfig.from_env().with_overrides(**overrides)

    def serve(self) -> int:
        from connect4live.interfaces.server import run_server

        config = self.load_config()
        print(f"Serving Connect Four on ws://{config.host}:{config.port} (Ctrl+C to stop)")
        run_server(config)
        return 0

    def play_game(self) -> int:
        """Play a game against the bot in the terminal."""
        human = Player.TWO if self.args.second else Player.ONE
        bot = BotPlayer(human.other().value, depth=self.args.depth)
        engine = RulesEngine()

        print("Starting a new Connect Four game!")
        print(f"You are {human}. Enter column number (0-{COLS - 1}) to make a move, 'q' to quit.")
        print(engine.board.render())

        while not engine.is_over:
            if engine.current_player == human.value:
                move = self.get_human_move(engine.board)
                if move is None:
                    continue
                if move == -1:
                    print("Quitting game.")
                    return 0
            else:
                print("Bot is thinking...")
                move = bot.choose_column(engine)
                print(f"Bot plays column {move}")

            try:
                engine.apply_move(move)
            except InvalidMove as e:
                print(e.message)
                continue
            print(engine.board.render())

        print("Game over!")
        result = engine.last_result
        if result.status == GameStatus.WON and result.winner == human.value:
            print("You win! Congratulations!")
        elif result.status == GameStatus.WON:
            print("Bot wins! Better luck next time.")
        else:
            print("It's a draw!")
        return 0

    def get_human_move(self, board: Board) -> Optional[int]:
        """
        Get a move from human player input.

        Returns:
            Column index, -1 to quit, or None if the input was invalid
        """
        user_input = input(f"Your move (columns 0-{COLS - 1}, q): ").strip().lower()
        if user_input == 'q':
            return -1
        try:
            move = int(user_input)
        except ValueError:
            print("Invalid input. Please enter a column number or 'q'.")
            return None

        if not board.is_legal(move):
            print(f"Column {move} is full or out of range. Legal moves: {board.legal_columns()}")
            return None
        return move

    def analyze_position(self) -> int:
        """Report winner, legal moves and the bot's choice for a position."""
        try:
            board = Board.from_rows(parse_position(self.args.position))
        except ValueError as e:
            print(f"Error parsing position: {e}")
            return 1

        print("Loaded position:")
        print(board.render())

        ones = int(np.count_nonzero(board.grid == Player.ONE.value))
        twos = int(np.count_nonzero(board.grid == Player.TWO.value))
        to_move = Player.ONE.value if ones == twos else Player.TWO.value

        winner = find_winner(board)
        if winner is not None:
            print(f"Win for {Player(winner)} detected")
        else:
            print("No win detected for any player")

        if board.is_full():
            print("Board is full")
        else:
            print(f"Empty spaces: {board.grid.size - board.disc_count()}")
        print(f"Valid moves: {board.legal_columns()}")

        engine = RulesEngine(board, to_move)
        if engine.is_over:
            return 0

        bot = BotPlayer(to_move, depth=self.args.depth)
        column = bot.choose_column(engine)
        print(f"Player {Player(to_move)} to move; bot suggests column {column} "
              f"({bot.nodes_evaluated} nodes evaluated)")
        return 0

    def show_leaderboard(self) -> int:
        data_dir = self.args.data_dir or ServerConfig.from_env().data_dir
        leaderboard = DataManager(data_dir).get_leaderboard(self.args.limit)
        if not leaderboard:
            print("No completed sessions recorded yet")
            return 0

        print("Rank | Name                 | Won | Played")
        print("-" * 42)
        for entry in leaderboard:
            print(f"{entry['rank']:4d} | {entry['name'][:20]:20s} | {entry['sessions_won']:3d} | "
                  f"{entry['sessions_played']:6d}")
        return 0

    def show_stats(self) -> int:
        """Print one player's totals and their most recent sessions."""
        data_dir = self.args.data_dir or ServerConfig.from_env().data_dir
        data = DataManager(data_dir)
        if self.args.name:
            record = data.find_identity(self.args.name)
        else:
            record = data.get_identity_stats(self.args.id)
        if record is None:
            print(f"No player found for {self.args.name or self.args.id}")
            return 1

        played = record.get("sessions_played", 0)
        won = record.get("sessions_won", 0)
        print(f"{record['name']} ({record['id']})")
        print(f"Sessions played: {played}")
        print(f"Sessions won: {won}")
        if played:
            print(f"Win rate: {won / played:.1%}")

        recent = data.get_completed_sessions(record["id"])[:self.args.limit]
        if recent:
            print("\nRecent sessions:")
        for session in recent:
            if session["first_id"] == record["id"]:
                opponent = session.get("second_name", session["second_id"])
            else:
                opponent = session.get("first_name", session["first_id"])
            if session["winner_id"] is None:
                outcome = "draw"
            elif session["winner_id"] == record["id"]:
                outcome = "won"
            else:
                outcome = "lost"
            if session["forfeit"]:
                outcome += " by forfeit"
            print(f"  {session['completed_at']}  vs {opponent}: {outcome}")
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    cli = SimpleCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
