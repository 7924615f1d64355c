"""
Scenario configurations for the reader.

Each scenario may define:
- worker_prompt / supervisor_prompt / enhancer_prompt: system prompts
- rules: compliance rules the supervisor enforces
- welcome_text, reprompt_text, card_reveal_text, closing_text: scripted lines
- fillers: stalling utterances spoken while a slow step is in flight
"""
