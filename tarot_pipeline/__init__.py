"""
Tarot voice reader.

A short spoken dialog: five profile questions, one card draw, one reading.

- ConversationStateMachine owns the phase sequence and the user profile.
- LLMCoordinator streams the worker's reply while the supervisor checks the
  user's input on the side and can interrupt the stream.
- InterruptionManager turns streamed tokens into sentences for speech output.
- LatencyOptimizer speaks a filler when a backend step runs long.
- ReadingSession wires it all together; `python -m tarot_pipeline` runs it.
"""
