"""Rule evaluators, rule definitions and event dispatch."""
from alerts.evaluation import Evaluation
from alerts.evaluator import evaluate, EVALUATORS
from alerts.rules_manager import RulesManager, build_rule
from alerts.dispatch import DispatchHub
from alerts.channels import ConsoleChannel, FileChannel, TelegramChannel
