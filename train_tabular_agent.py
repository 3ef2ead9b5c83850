import argparse
import time

from actor import RewardConfig
from arena import WallPattern
from arena_env import ArenaRenderer
from events import EventChannel, EPISODE_STEPPED, LEARNING_CHANGED, BOMB_PLACED
from q_learning import Trainer, TrainerConfig


class EpisodeProgressLogger:
    """Prints training progress every ``log_frequency`` finished episodes."""

    def __init__(self, log_frequency=100):
        self.log_frequency = log_frequency
        self.last_logged_episode = 0

    def __call__(self, stats):
        if stats.episode_count == self.last_logged_episode:
            return
        if stats.episode_count % self.log_frequency == 0:
            self.last_logged_episode = stats.episode_count
            print(f"Episode: {stats.episode_count}, Wins: {stats.win_count}, "
                  f"Win rate: {stats.overall_win_rate:.3f}, Recent: {stats.recent_win_rate:.3f}, "
                  f"Epsilon: {stats.decayed_epsilon:.5f}, Alpha: {stats.decayed_alpha:.5f}, "
                  f"States: {stats.states_seen}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Train a tabular Q-learning agent in the bomb arena')
    parser.add_argument('--epsilon', type=float, default=0.2, help='Exploration probability')
    parser.add_argument('--alpha', type=float, default=0.1, help='Learning rate')
    parser.add_argument('--gamma', type=float, default=0.9, help='Discount factor')
    parser.add_argument('--max-episodes', type=int, default=1000, help='Episodes before learning stops')
    parser.add_argument('--max-turns', type=int, default=100, help='Turns per episode before it is cut off')
    parser.add_argument('--no-decay', action='store_false', dest='parameter_decay',
                        help='Keep epsilon and alpha constant instead of decaying them')
    parser.add_argument('--width', type=int, default=6, help='Arena width')
    parser.add_argument('--height', type=int, default=6, help='Arena height')
    parser.add_argument('--wall-pattern', type=str, default='split',
                        choices=[p.name.lower() for p in WallPattern], help='Breakable wall layout')
    parser.add_argument('--bomb-timer', type=int, default=3, help='Ticks between placing a bomb and its explosion')
    parser.add_argument('--seed', type=int, default=None, help='Seed for the exploration RNG')
    parser.add_argument('--log-frequency', type=int, default=100, help='Print progress every N episodes')
    parser.add_argument('--eval-episodes', type=int, default=0,
                        help='Greedy evaluation episodes to run after training')
    parser.add_argument('--render', action='store_true', help='Draw every step with pygame')
    parser.add_argument('--render-fps', type=int, default=10, help='Frame rate used with --render')
    parser.add_argument('--verbose', action='store_true', help='Print per-episode details')
    return parser.parse_args(argv)


def build_config(args):
    return TrainerConfig(
        epsilon=args.epsilon,
        alpha=args.alpha,
        gamma=args.gamma,
        max_episodes=args.max_episodes,
        max_turns=args.max_turns,
        parameter_decay=args.parameter_decay,
        width=args.width,
        height=args.height,
        wall_pattern=WallPattern[args.wall_pattern.upper()],
        bomb_timer=args.bomb_timer,
    )


def main(argv=None):
    args = parse_args(argv)
    try:
        config = build_config(args).validate()
    except ValueError as e:
        print(f"Error: {e}")
        return 2

    events = EventChannel()
    events.subscribe(EPISODE_STEPPED, EpisodeProgressLogger(log_frequency=args.log_frequency))
    events.subscribe(LEARNING_CHANGED, lambda learning: print(f"[INFO] Learning: {learning}"))
    if args.verbose:
        events.subscribe(BOMB_PLACED, lambda position, timer: print(f"[DEBUG] Bomb placed at {position} ({timer} ticks)"))

    trainer = Trainer(config, rewards=RewardConfig(), events=events, seed=args.seed, verbose=args.verbose)

    renderer = None
    if args.render:
        renderer = ArenaRenderer(trainer.world, render_fps=args.render_fps)

        def _draw(stats):
            renderer.hud_text = f"Ep {stats.episode_count} Turn {stats.turn_count} Wins {stats.win_count}"
            renderer.draw(trainer.actor.position, trainer.state.danger)

        events.subscribe(EPISODE_STEPPED, _draw)

    print(f"Starting new training: {config}")
    start_time = time.time()
    steps = trainer.train()
    elapsed = time.time() - start_time

    stats = trainer.stats()
    print("--- Training Complete ---")
    print(f"Steps: {steps} in {elapsed:.1f}s")
    print(f"Episodes: {stats.episode_count}, Wins: {stats.win_count}")
    print(f"Overall win rate: {stats.overall_win_rate:.3f}, Recent win rate: {stats.recent_win_rate:.3f}")
    print(f"States in Q-table: {stats.states_seen}")
    if args.verbose:
        print("[DEBUG] Arena after training:")
        print(trainer.world.render_text(agent_position=trainer.actor.position))

    if args.eval_episodes > 0:
        from analyze_agent_performance import analyze_performance, print_report
        print_report(analyze_performance(trainer, num_episodes=args.eval_episodes))

    if renderer is not None:
        renderer.close()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
